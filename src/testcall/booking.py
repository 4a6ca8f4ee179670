"""Hand-off of a reviewed extraction to the jobs/calendar webhook."""

import asyncio
import logging
from datetime import datetime, timezone

import httpx

from testcall.extraction import JobExtraction
from testcall.session import CallSession
from testcall.transcript import to_json_array, to_plain_text

logger = logging.getLogger(__name__)

# Dashboard expects: low | medium | high
_DEFAULT_URGENCY = "low"


def build_job_payload(session: CallSession, extraction: JobExtraction) -> dict:
    """Build the jobs webhook payload from a reviewed extraction."""
    return {
        "client_name": extraction.client_name or "Test Caller",
        "client_phone": extraction.client_phone or "",
        "client_email": extraction.client_email or "",
        "service_type": extraction.service_type or "",
        "scheduled_date": extraction.scheduled_date or "",
        "scheduled_time": extraction.scheduled_time or "",
        "location": extraction.location or "",
        "notes": extraction.notes or "",
        "urgency": extraction.urgency or _DEFAULT_URGENCY,
        "confidence": extraction.confidence,

        "source": "test_call",
        "call_id": session.call_id,
        "call_transcript": to_plain_text(session.transcript),
        "transcript_object": to_json_array(session.transcript),
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


class BookingClient:
    """Posts accepted test-call jobs to the jobs webhook.

    Retries once with a short backoff; never raises.
    """

    def __init__(
        self,
        *,
        jobs_url: str,
        webhook_secret: str = "",
        timeout: float = 15.0,
        retry_delay: float = 2.0,
    ):
        self.jobs_url = jobs_url
        self.secret = webhook_secret
        self.timeout = timeout
        self.retry_delay = retry_delay

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers["X-Webhook-Secret"] = self.secret
        return headers

    async def send_job(self, payload: dict) -> dict:
        for attempt in range(2):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.jobs_url, json=payload, headers=self._headers())
                    resp.raise_for_status()
                    return resp.json()
            except Exception as e:
                if attempt == 0:
                    logger.warning("Job hand-off failed (attempt 1), retrying in %.0fs: %s", self.retry_delay, e)
                    await asyncio.sleep(self.retry_delay)
                else:
                    logger.error("Job hand-off failed after retry: %s", e)
                    return {"success": False, "error": str(e)}
        return {"success": False, "error": "unreachable"}
