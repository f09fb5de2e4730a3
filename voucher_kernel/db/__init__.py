"""Database layer - engine, base classes, and money types."""

from voucher_kernel.db.base import UUID, Base, TimestampedBase, UUIDString
from voucher_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)
from voucher_kernel.db.types import CurrencyCode, FaceNumeric, WholesaleNumeric

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UUID",
    "WholesaleNumeric",
    "FaceNumeric",
    "CurrencyCode",
]
