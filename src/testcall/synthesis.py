"""Text-to-speech for the assistant's side of a test call.

``BackendSynthesizer`` uses the Flynn voice-preview endpoint so the test call
sounds like the configured receptionist voice. ``PipecatSynthesizer`` adapts
any Pipecat ``TTSService`` (Deepgram Aura by default) and is used as the
fallback. ``FallbackSynthesizer`` puts the two behind a circuit breaker:

  1. Ask the primary, with a timeout.
  2. On error or timeout, record a failure and ask the fallback.
  3. While the breaker is open, go straight to the fallback.
"""

import asyncio
import base64
import binascii
import io
import logging
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np
import soundfile as sf
from pipecat.clocks.system_clock import SystemClock
from pipecat.frames.frames import ErrorFrame, StartFrame, TTSAudioRawFrame
from pipecat.processors.frame_processor import FrameProcessorSetup
from pipecat.services.tts_service import TTSService
from pipecat.utils.asyncio.task_manager import TaskManager

from testcall.backend import BackendClient
from testcall.circuit_breaker import CircuitBreaker
from testcall.config import Voice
from testcall.errors import BackendError, SynthesisError

logger = logging.getLogger(__name__)

_SUFFIXES = {
    "audio/mpeg": ".mp3",
    "audio/mp3": ".mp3",
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/wave": ".wav",
    "audio/ogg": ".ogg",
    "audio/flac": ".flac",
}


@dataclass(frozen=True)
class SynthesizedAudio:
    data: bytes
    content_type: str = "audio/wav"

    @property
    def suffix(self) -> str:
        return _SUFFIXES.get(self.content_type.split(";")[0].strip().lower(), ".wav")


class Synthesizer(Protocol):
    async def synthesize(self, text: str, voice: Voice) -> SynthesizedAudio: ...


class BackendSynthesizer:
    def __init__(self, client: BackendClient):
        self._client = client

    async def synthesize(self, text: str, voice: Voice) -> SynthesizedAudio:
        try:
            body = await self._client.synthesize(
                text,
                voice_option=voice.voice_id,
                voice_profile_id=voice.voice_profile_id,
            )
        except BackendError as e:
            raise SynthesisError(str(e)) from e

        encoded = body.get("audio")
        if not encoded:
            raise SynthesisError("voice preview returned no audio")
        try:
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise SynthesisError(f"voice preview audio is not base64: {e}") from e
        return SynthesizedAudio(data=data, content_type=body.get("contentType") or "audio/mpeg")


def pcm16_to_wav(pcm: bytes, sample_rate: int, channels: int = 1) -> bytes:
    samples = np.frombuffer(pcm, dtype="<i2")
    if channels > 1:
        samples = samples.reshape(-1, channels)
    buf = io.BytesIO()
    sf.write(buf, samples, sample_rate, format="WAV", subtype="PCM_16")
    return buf.getvalue()


class PipecatSynthesizer:
    """Collects the audio frames of a Pipecat TTS service into one WAV clip.

    The service runs outside a pipeline, so it is set up and started lazily
    on first use with its own clock and task manager. Its own voice setting
    is used; the receptionist voice id only applies to the backend voices.
    """

    def __init__(self, tts: TTSService, sample_rate: int = 16000):
        self._tts = tts
        self._sample_rate = sample_rate
        self._started = False

    async def _ensure_started(self) -> None:
        if self._started:
            return
        clock = SystemClock()
        clock.start()
        await self._tts.setup(
            FrameProcessorSetup(
                clock=clock,
                task_manager=TaskManager(loop=asyncio.get_running_loop()),
                pipeline_worker=None,
                audio_out_sample_rate=self._sample_rate,
            )
        )
        await self._tts.start(StartFrame())
        self._started = True
        logger.info("Pipecat TTS service started (lazy init)")

    async def close(self) -> None:
        if not self._started:
            return
        self._started = False
        await self._tts.cleanup()

    async def synthesize(self, text: str, voice: Voice) -> SynthesizedAudio:
        chunks: list[bytes] = []
        sample_rate = self._sample_rate
        channels = 1
        try:
            await self._ensure_started()
            async for frame in self._tts.run_tts(text, uuid.uuid4().hex):
                if isinstance(frame, ErrorFrame):
                    raise SynthesisError(f"Pipecat TTS error: {frame.error}")
                if isinstance(frame, TTSAudioRawFrame):
                    chunks.append(frame.audio)
                    sample_rate = frame.sample_rate
                    channels = frame.num_channels
        except SynthesisError:
            raise
        except Exception as e:
            raise SynthesisError(f"Pipecat TTS raised: {e}") from e

        if not chunks:
            raise SynthesisError("Pipecat TTS produced no audio")
        return SynthesizedAudio(
            data=pcm16_to_wav(b"".join(chunks), sample_rate, channels),
            content_type="audio/wav",
        )


class FallbackSynthesizer:
    def __init__(
        self,
        *,
        primary: Synthesizer,
        fallback: Synthesizer,
        primary_timeout: float = 8.0,
        failure_threshold: int = 3,
        cooldown_seconds: float = 60.0,
    ):
        self._primary = primary
        self._fallback = fallback
        self._primary_timeout = primary_timeout
        self._circuit = CircuitBreaker(
            failure_threshold=failure_threshold,
            cooldown_seconds=cooldown_seconds,
            label="TTS",
        )

    async def synthesize(self, text: str, voice: Voice) -> SynthesizedAudio:
        if self._circuit.should_try():
            try:
                audio = await asyncio.wait_for(
                    self._primary.synthesize(text, voice), timeout=self._primary_timeout
                )
            except asyncio.TimeoutError:
                logger.warning("Primary TTS timed out after %.1fs", self._primary_timeout)
            except Exception:
                logger.exception("Primary TTS failed")
            else:
                self._circuit.record_success()
                return audio
            self._circuit.record_failure()
            logger.info("FALLBACK TTS activated for utterance")
        else:
            logger.info("Circuit breaker open, using fallback TTS directly")
        return await self._fallback.synthesize(text, voice)


def fallback_tts_from_env(api_key: Optional[str], voice: str, session) -> Optional[PipecatSynthesizer]:
    """Build the Deepgram fallback, or None when no key is configured."""
    if not api_key:
        return None
    from pipecat.services.deepgram.tts import DeepgramHttpTTSService

    tts = DeepgramHttpTTSService(
        api_key=api_key,
        aiohttp_session=session,
        settings=DeepgramHttpTTSService.Settings(model=voice, voice=voice),
        sample_rate=16000,
        encoding="linear16",
    )
    return PipecatSynthesizer(tts, sample_rate=16000)
