"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Allocates the daily running number inside purchase order numbers
    (``PO-YYYYMMDD-NNN``).  Each day is its own named counter row, locked
    with ``SELECT ... FOR UPDATE`` so that two merchants checking out at the
    same moment can never receive the same order number.

Architecture position:
    Kernel > Services.  Called by OrderService.create_draft().

Invariants enforced:
    - Values for a given sequence name are strictly increasing.
    - The aggregate max-plus-one pattern over existing order numbers is NOT
      used; the counter row is the sole source of truth.  (Deleting the
      latest draft therefore never hands its number to the next order.)
    - Transactional: the increment becomes visible only when the caller's
      transaction commits.

Failure modes:
    - IntegrityError on a concurrent first-use of the same counter name is
      absorbed by a SAVEPOINT and a re-read.
"""

from datetime import date

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from voucher_kernel.db.base import Base
from voucher_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """One row per named sequence holding its last allocated value."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for transactional sequence numbers.

    Contract:
        ``next_value(name)`` returns the next strictly-monotonic integer for
        ``name``; ``next_order_number(day)`` formats the daily purchase order
        number.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    ORDER_NUMBER_PREFIX = "PO"

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """
        Lock (or create) the counter row for ``sequence_name`` and increment it.

        Returns:
            The next sequence value (always > 0).
        """
        counter = self._lock_counter(sequence_name)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=sequence_name, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._lock_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()

        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def next_order_number(self, day: date) -> str:
        """
        Allocate the next purchase order number for ``day``.

        Example:
            next_order_number(date(2025, 1, 15)) -> "PO-20250115-001"
        """
        stamp = day.strftime("%Y%m%d")
        value = self.next_value(f"purchase_order:{stamp}")
        return f"{self.ORDER_NUMBER_PREFIX}-{stamp}-{value:03d}"

    def _lock_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
