import time
from dataclasses import dataclass, field
from typing import Iterator

CALLER = "caller"
ASSISTANT = "assistant"

_LABELS = {CALLER: "Caller", ASSISTANT: "Assistant"}


@dataclass(frozen=True)
class ConversationTurn:
    role: str
    text: str
    sequence: int
    timestamp: float = field(default_factory=time.time)


class TranscriptOrderError(ValueError):
    """Raised when an append would break strict caller/assistant alternation."""


class TranscriptLog:
    """Append-only, strictly alternating record of one call.

    The assistant greeting is always turn 0, so even sequence numbers belong
    to the assistant and odd ones to the caller.
    """

    def __init__(self):
        self._turns: list[ConversationTurn] = []

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[ConversationTurn]:
        return iter(self._turns)

    def __getitem__(self, index: int) -> ConversationTurn:
        return self._turns[index]

    @property
    def turns(self) -> tuple:
        return tuple(self._turns)

    @property
    def expected_role(self) -> str:
        return ASSISTANT if len(self._turns) % 2 == 0 else CALLER

    def append(self, role: str, text: str) -> ConversationTurn:
        if role not in _LABELS:
            raise ValueError(f"unknown role {role!r}")
        if role != self.expected_role:
            raise TranscriptOrderError(
                f"turn {len(self._turns)} must be {self.expected_role}, got {role}"
            )
        turn = ConversationTurn(role=role, text=text, sequence=len(self._turns))
        self._turns.append(turn)
        return turn

    def caller_turn_count(self) -> int:
        return sum(1 for t in self._turns if t.role == CALLER)


def to_plain_text(log) -> str:
    """Render turns as ``Caller:`` / ``Assistant:`` lines in sequence order."""
    return "\n".join(f"{_LABELS[t.role]}: {t.text}" for t in log)


def to_json_array(log) -> list[dict]:
    """Convert turns to a list of {role, content} dicts for the jobs webhook."""
    return [{"role": t.role, "content": t.text} for t in log]


def to_timestamped_dump(log, call_id: str, final_state: str) -> dict:
    """Build a timestamped transcript dump dict for structured logging.

    Timestamps are relative seconds from the first turn.
    """
    turns = list(log)
    base_time = turns[0].timestamp if turns else 0.0
    return {
        "call_id": call_id,
        "final_state": final_state,
        "entries": [
            {
                "t": round(t.timestamp - base_time, 1),
                "seq": t.sequence,
                "role": t.role,
                "content": t.text,
            }
            for t in turns
        ],
    }
