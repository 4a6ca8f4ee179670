import logging
from typing import Optional

import httpx

from testcall.circuit_breaker import CircuitBreaker
from testcall.errors import BackendError, BackendUnavailableError

logger = logging.getLogger(__name__)

CHAT_MODEL = "gpt-4o-mini"
STT_MODEL = "whisper-1"


def _text_field(value, label: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise BackendError(f"{label} returned {type(value).__name__} text, expected string")
    return value


class BackendClient:
    """HTTP client for the Flynn AI endpoints used by a test call.

    Every call goes through a circuit breaker: after 3 consecutive failures
    requests are skipped for 60s and ``BackendUnavailableError`` is raised
    immediately, so a dead backend turns into a quick "try again" notice
    instead of a long stall per turn.
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=60.0,
            label="Flynn backend",
        )
        if client is not None:
            self._client = client
        else:
            headers = {}
            if token:
                headers["Authorization"] = f"Bearer {token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
            )

    async def close(self):
        """Close the shared HTTP client. Call when the harness is dismissed."""
        await self._client.aclose()

    async def _post(self, path: str, label: str, **kwargs) -> dict:
        if not self._circuit.should_try():
            logger.warning("Backend circuit breaker open, skipping %s", label)
            raise BackendUnavailableError(f"{label}: backend unavailable")
        try:
            resp = await self._client.post(path, **kwargs)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            self._circuit.record_failure()
            logger.error("%s failed: %s", label, e)
            raise BackendError(f"{label} failed: {e}") from e
        self._circuit.record_success()
        if not isinstance(body, dict):
            raise BackendError(f"{label} returned {type(body).__name__}, expected object")
        return body

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "audio.wav",
        content_type: str = "audio/wav",
    ) -> str:
        body = await self._post(
            "/api/ai/transcribe",
            "transcribe",
            files={"file": (filename, audio, content_type)},
            data={"model": STT_MODEL},
        )
        return _text_field(body.get("text"), "transcribe")

    async def chat(
        self,
        messages: list[dict],
        model: str = CHAT_MODEL,
        temperature: float = 0.7,
        max_tokens: int = 150,
    ) -> str:
        body = await self._post(
            "/api/ai/chat",
            "chat",
            json={
                "messages": messages,
                "model": model,
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
        )
        reply = body.get("reply")
        if not reply:
            try:
                reply = body["choices"][0]["message"]["content"]
            except (KeyError, IndexError, TypeError):
                reply = None
        return _text_field(reply, "chat")

    async def extract_job(self, transcript: str, prompt: str = "") -> Optional[dict]:
        payload = {"transcription": transcript}
        if prompt:
            payload["prompt"] = prompt
        body = await self._post("/api/ai/extract-job", "extract_job", json=payload)
        job = body.get("job") or body.get("extraction")
        return job if isinstance(job, dict) else None

    async def synthesize(
        self,
        text: str,
        voice_option: str,
        voice_profile_id: Optional[str] = None,
    ) -> dict:
        payload = {"text": text, "voiceOption": voice_option}
        if voice_profile_id:
            payload["voiceProfileId"] = voice_profile_id
        return await self._post("/voice/preview", "synthesize", json=payload)
