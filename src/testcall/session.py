import uuid
from dataclasses import dataclass, field
from typing import Optional

from testcall.config import ReceptionistConfig
from testcall.transcript import TranscriptLog


def new_call_id() -> str:
    return f"test_{uuid.uuid4().hex[:12]}"


@dataclass
class CallSession:
    config: ReceptionistConfig
    call_id: str = field(default_factory=new_call_id)
    start_time: float = 0.0

    transcript: TranscriptLog = field(default_factory=TranscriptLog)

    # Extraction
    extraction_attempted: bool = False
    extraction: Optional[object] = None

    # Microphone
    muted: bool = False
