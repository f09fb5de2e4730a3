"""
Clock -- injectable time source.

Responsibility:
    Every timestamp the engine persists (order numbers, processing start and
    end, request sent / response received) comes from a Clock passed in by
    the caller, so tests can pin the date that appears in ``PO-YYYYMMDD-NNN``
    and assert exact lifecycle timestamps.

Architecture position:
    Kernel > Domain.  SystemClock is the only place that reads the wall clock.
    Durations (response latency) are measured with ``time.monotonic`` by the
    services themselves and are not part of this abstraction.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware ``datetime`` in UTC.
        - ``today()`` is the UTC calendar date of ``now()``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time (UTC, timezone-aware)."""
        ...

    def today(self) -> date:
        return self.now().astimezone(timezone.utc).date()


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value until ``advance()`` or ``set_time()``
    is called; ``tick()`` moves forward by one second and returns the new
    time.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or datetime(
            2025, 1, 15, 9, 30, 0, tzinfo=timezone.utc
        )
        self._offset = timedelta()

    def now(self) -> datetime:
        return self._fixed_time + self._offset

    def set_time(self, time: datetime) -> None:
        self._fixed_time = time
        self._offset = timedelta()

    def advance(self, seconds: float = 1) -> None:
        self._offset += timedelta(seconds=seconds)

    def tick(self) -> datetime:
        self.advance(1)
        return self.now()
