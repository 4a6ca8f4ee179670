import logging
from dataclasses import asdict, dataclass
from typing import Optional

from testcall.backend import BackendClient
from testcall.errors import BackendError
from testcall.prompts import EXTRACTION_PROMPT

logger = logging.getLogger(__name__)

URGENCY_LEVELS = ("low", "medium", "high")

_FIELDS = {
    "clientName": "client_name",
    "clientPhone": "client_phone",
    "clientEmail": "client_email",
    "serviceType": "service_type",
    "scheduledDate": "scheduled_date",
    "scheduledTime": "scheduled_time",
    "location": "location",
    "notes": "notes",
}


@dataclass(frozen=True)
class JobExtraction:
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    client_email: Optional[str] = None
    service_type: Optional[str] = None
    scheduled_date: Optional[str] = None
    scheduled_time: Optional[str] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    urgency: Optional[str] = None
    confidence: Optional[float] = None

    @classmethod
    def from_dict(cls, raw: dict) -> "JobExtraction":
        """Parse the backend's camelCase job. Blank or malformed values become None."""
        values = {}
        for key, attr in _FIELDS.items():
            value = raw.get(key, raw.get(attr))
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                value = str(value)
            if isinstance(value, str) and value.strip() and value.strip().lower() != "null":
                values[attr] = value.strip()

        urgency = raw.get("urgency")
        if isinstance(urgency, str) and urgency.strip().lower() in URGENCY_LEVELS:
            values["urgency"] = urgency.strip().lower()

        confidence = raw.get("confidence")
        try:
            confidence = float(confidence)
        except (TypeError, ValueError):
            confidence = None
        if confidence is not None and 0.0 <= confidence <= 1.0:
            values["confidence"] = confidence
        return cls(**values)

    def is_confident(self, threshold: float = 0.5) -> bool:
        return self.confidence is not None and self.confidence > threshold

    def to_dict(self) -> dict:
        camel = {attr: key for key, attr in _FIELDS.items()}
        out = {}
        for attr, value in asdict(self).items():
            if value is not None:
                out[camel.get(attr, attr)] = value
        return out


class ExtractionGateway:
    """One-shot structured extraction for a single call.

    ``should_extract()`` turns true once the caller has spoken
    ``turn_threshold`` times and stays false after the first attempt,
    whether that attempt succeeded or not.
    """

    def __init__(
        self,
        client: BackendClient,
        *,
        turn_threshold: int = 3,
        confidence_threshold: float = 0.5,
    ):
        self._client = client
        self.turn_threshold = turn_threshold
        self.confidence_threshold = confidence_threshold
        self.attempted = False

    def should_extract(self, caller_turns: int) -> bool:
        return not self.attempted and caller_turns >= self.turn_threshold

    async def extract(self, transcript_text: str) -> Optional[JobExtraction]:
        self.attempted = True
        try:
            raw = await self._client.extract_job(transcript_text, prompt=EXTRACTION_PROMPT)
        except BackendError as e:
            logger.warning("Job extraction failed, continuing without it: %s", e)
            return None

        if not raw:
            logger.info("Extraction returned no job")
            return None

        job = JobExtraction.from_dict(raw)
        if not job.is_confident(self.confidence_threshold):
            logger.info(
                "Discarding extraction with confidence %s (needs > %.2f)",
                job.confidence, self.confidence_threshold,
            )
            return None
        logger.info("Extraction accepted with confidence %.2f", job.confidence)
        return job
