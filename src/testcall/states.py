from enum import Enum

LIVE_STATES = {"requesting_permission", "active", "processing"}


class ConversationState(Enum):
    IDLE = "idle"
    REQUESTING_PERMISSION = "requesting_permission"
    ACTIVE = "active"
    PROCESSING = "processing"
    ENDED = "ended"
    REVIEWING_EXTRACTION = "reviewing_extraction"

    @property
    def is_live(self) -> bool:
        """A call is in progress and may still mutate the transcript."""
        return self.value in LIVE_STATES
