"""Receptionist configuration snapshot and harness settings.

``validate_config()`` checks the environment before the CLI opens any audio
device, so a missing backend URL fails loudly at startup instead of as a
transcription error halfway through a test call.
"""

import logging
import os
import sys
from dataclasses import dataclass, field, replace
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_GREETING = "Hi! This is Flynn, your AI receptionist. How can I help you today?"
DEFAULT_VOICE_ID = "flynn_warm"

REQUIRED_VARS = [
    "FLYNN_API_URL",
    "FLYNN_API_TOKEN",
]

OPTIONAL_VARS = [
    "JOBS_WEBHOOK_URL",
    "JOBS_WEBHOOK_SECRET",
    "DEEPGRAM_API_KEY",
    "DEEPGRAM_TTS_VOICE",
    "CAPTURE_MAX_SECONDS",
    "LOG_LEVEL",
]


@dataclass(frozen=True)
class Voice:
    voice_id: str = DEFAULT_VOICE_ID
    voice_profile_id: Optional[str] = None


@dataclass(frozen=True)
class ReceptionistConfig:
    """Greeting, intake questions and voice for one test call.

    Frozen so that a call works from the values it started with; the
    questions are always stored as a tuple.
    """

    greeting: str = DEFAULT_GREETING
    questions: tuple = ()
    voice_id: str = DEFAULT_VOICE_ID
    voice_profile_id: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "questions", tuple(q.strip() for q in self.questions if q and q.strip()))
        if not (self.greeting or "").strip():
            object.__setattr__(self, "greeting", DEFAULT_GREETING)

    @property
    def voice(self) -> Voice:
        return Voice(voice_id=self.voice_id, voice_profile_id=self.voice_profile_id)

    def snapshot(self) -> "ReceptionistConfig":
        return replace(self)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default


@dataclass
class HarnessSettings:
    """Tunable policy constants for the harness."""

    capture_max_seconds: float = 10.0
    extraction_turn_threshold: int = 3
    confidence_threshold: float = 0.5
    auto_close_seconds: float = 2.0
    min_transcript_chars: int = 2
    request_timeout: float = 30.0
    api_url: str = ""
    api_token: str = field(default="", repr=False)
    jobs_webhook_url: str = ""
    jobs_webhook_secret: str = field(default="", repr=False)

    @classmethod
    def from_env(cls) -> "HarnessSettings":
        return cls(
            capture_max_seconds=_env_float("CAPTURE_MAX_SECONDS", 10.0),
            extraction_turn_threshold=_env_int("EXTRACTION_TURN_THRESHOLD", 3),
            auto_close_seconds=_env_float("AUTO_CLOSE_SECONDS", 2.0),
            request_timeout=_env_float("BACKEND_TIMEOUT", 30.0),
            api_url=os.getenv("FLYNN_API_URL", ""),
            api_token=os.getenv("FLYNN_API_TOKEN", ""),
            jobs_webhook_url=os.getenv("JOBS_WEBHOOK_URL", ""),
            jobs_webhook_secret=os.getenv("JOBS_WEBHOOK_SECRET", ""),
        )


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty.  Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env or export them before starting a test call.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)
