"""Circuit breaker for calls to the Flynn backend and the TTS providers.

After ``failure_threshold`` consecutive failures the breaker opens and the
caller fails fast for ``cooldown_seconds``; the first call after the cooldown
is let through as a probe.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class CircuitBreaker:
    failure_threshold: int = 3
    cooldown_seconds: float = 60.0
    label: str = "service"

    _consecutive_failures: int = field(default=0, init=False, repr=False)
    _opened_at: Optional[float] = field(default=None, init=False, repr=False)

    @property
    def is_open(self) -> bool:
        return self._opened_at is not None

    def should_try(self) -> bool:
        if self._consecutive_failures < self.failure_threshold:
            return True
        if self._opened_at is not None and (time.monotonic() - self._opened_at) >= self.cooldown_seconds:
            return True  # half-open probe
        return False

    def record_success(self) -> None:
        if self._opened_at is not None:
            logger.info("Circuit breaker CLOSED for %s", self.label)
        self._consecutive_failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures < self.failure_threshold:
            return
        if self._opened_at is None:
            logger.warning(
                "Circuit breaker OPENED for %s after %d consecutive failures, "
                "failing fast for %.0fs",
                self.label,
                self._consecutive_failures,
                self.cooldown_seconds,
            )
        # A failed half-open probe restarts the cooldown.
        self._opened_at = time.monotonic()
