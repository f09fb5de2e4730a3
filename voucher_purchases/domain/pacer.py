"""
Fixed-interval rate-limit pacer.

The provider enforces a shared per-credential rate limit.  The confirm loop
calls ``record()`` after each unit that went through, and the pacer pauses
once every ``every`` recorded units.  The sleep function is injectable so
tests can observe pauses without waiting.
"""

from __future__ import annotations

import time
from collections.abc import Callable


class RateLimitPacer:
    """Pause ``pause_seconds`` after every ``every`` recorded calls.

    Contract:
        - ``record()`` returns True when it paused.
        - ``pauses`` counts pauses taken since construction or ``reset()``.

    Non-goals:
        - No token bucket or wall-clock windowing; the upstream limit is
          coarse enough that a counter is sufficient.
    """

    def __init__(
        self,
        every: int = 10,
        pause_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if every < 1:
            raise ValueError(f"every must be >= 1, got {every}")
        if pause_seconds < 0:
            raise ValueError(f"pause_seconds must be >= 0, got {pause_seconds}")
        self.every = every
        self.pause_seconds = pause_seconds
        self._sleep = sleep
        self._count = 0
        self.pauses = 0

    @property
    def count(self) -> int:
        return self._count

    def record(self) -> bool:
        self._count += 1
        if self._count % self.every == 0:
            self._sleep(self.pause_seconds)
            self.pauses += 1
            return True
        return False

    def reset(self) -> None:
        self._count = 0
        self.pauses = 0
