"""Pure kernel domain objects (no ORM, no I/O)."""

from voucher_kernel.domain.clock import Clock, DeterministicClock, SystemClock

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
