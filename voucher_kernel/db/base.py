"""
Module: voucher_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models in the
    voucher engine.  Provides the UUID primary key convention, the type
    annotation map for money and timestamps, and the TimestampedBase mixin.
Architecture position: Kernel > DB.  Lowest-level import target; MUST NOT
    import from services, clients, or purchase packages.

Invariants enforced:
    - UUID primary keys stored as String(36) so the same schema runs on
      PostgreSQL in production and SQLite in the test suite.
    - Decimal maps to Numeric(18, 4) by default.  Money is NEVER float;
      columns that need a different scale (face values) declare it
      explicitly.
    - datetime maps to DateTime(timezone=True).
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Converts Python UUID objects to their canonical 36-character form on
    the way in and back to UUID on the way out.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            return str(PyUUID(value))
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return PyUUID(value)


class Base(DeclarativeBase):
    """
    Declarative base for all voucher engine models.

    Contract:
        Every ORM model inherits from Base (or TimestampedBase) and gets a
        uuid4 primary key plus the shared column type mapping.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(18, 4),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: Integer,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TimestampedBase(Base):
    """
    Abstract base with row creation and modification timestamps.

    ``created_at`` / ``updated_at`` are row metadata maintained by the
    database; lifecycle timestamps that carry business meaning (request
    sent, processing started, ...) are explicit columns set from an
    injected Clock.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


UUID = PyUUID
