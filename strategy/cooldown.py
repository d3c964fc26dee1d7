import logging
import time
from typing import Callable, Optional

from api.metrics import metrics


logger = logging.getLogger(__name__)


class CooldownState:
    """Process-wide "resume trading no earlier than" deadline.

    Writers overwrite unconditionally, so when several losing closes land at
    once the last writer wins. Everything runs on one event loop, so a read
    never observes a partial write.
    """

    def __init__(self, locked_until: Optional[float] = None, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._locked_until = clock() if locked_until is None else float(locked_until)

    def read(self) -> float:
        return self._locked_until

    def extend(self, new_until: float) -> None:
        previous = self._locked_until
        self._locked_until = float(new_until)
        metrics.update_cooldown(self._locked_until)
        logger.info(
            "Trading locked until %.0f (was %.0f)",
            self._locked_until,
            previous,
        )

    def is_locked(self, now: Optional[float] = None) -> bool:
        return self.remaining(now) > 0

    def remaining(self, now: Optional[float] = None) -> float:
        current = self._clock() if now is None else now
        return max(0.0, self._locked_until - current)
