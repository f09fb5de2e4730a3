"""
ORM models for merchant stores and their catalog options.

Contract:
    StoreModel carries the provider credentials and storefront token a
    purchase order needs; CatalogOptionModel is the per-store pricing and
    stock row that reconciliation and code attachment write back to.

Architecture: voucher_purchases/models.  Imports from voucher_kernel.db only.

Invariants enforced:
    - (store_id, option_code) is UNIQUE on catalog_options.
    - ``stock_quantity`` only ever grows by the number of codes the
      storefront accepted.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from voucher_kernel.db.base import TimestampedBase, UUIDString
from voucher_kernel.db.types import FaceNumeric, WholesaleNumeric


class StoreModel(TimestampedBase):
    """A merchant store connected to the voucher provider."""

    __tablename__ = "stores"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    provider_username: Mapped[str] = mapped_column(String(200), nullable=False)
    # Stored as given; encryption belongs to the store onboarding service.
    provider_password: Mapped[str] = mapped_column(String(500), nullable=False)
    provider_terminal_key: Mapped[str] = mapped_column(String(200), nullable=False)
    sandbox: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    storefront_access_token: Mapped[str | None] = mapped_column(
        String(1000), nullable=True,
    )
    provider_balance: Mapped[Decimal | None] = mapped_column(
        WholesaleNumeric, nullable=True,
    )
    balance_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    options: Mapped[list["CatalogOptionModel"]] = relationship(
        "CatalogOptionModel",
        back_populates="store",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        # Credentials stay out of reprs and logs.
        return f"<StoreModel {self.id} {self.name!r} sandbox={self.sandbox}>"


class CatalogOptionModel(TimestampedBase):
    """Per-store catalog pricing and stock for one provider option."""

    __tablename__ = "catalog_options"

    __table_args__ = (
        UniqueConstraint("store_id", "option_code", name="uq_catalog_store_option"),
    )

    store_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stores.id", ondelete="CASCADE"),
        nullable=False,
    )
    option_code: Mapped[str] = mapped_column(String(100), nullable=False)
    option_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    destination_product_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True,
    )

    wholesale_price: Mapped[Decimal | None] = mapped_column(
        WholesaleNumeric, nullable=True,
    )
    original_price: Mapped[Decimal | None] = mapped_column(
        WholesaleNumeric, nullable=True,
    )
    store_currency_price: Mapped[Decimal | None] = mapped_column(
        WholesaleNumeric, nullable=True,
    )
    custom_price: Mapped[Decimal | None] = mapped_column(
        WholesaleNumeric, nullable=True,
    )
    markup_percentage: Mapped[Decimal | None] = mapped_column(
        Numeric(9, 4), nullable=True,
    )
    min_face_value: Mapped[Decimal | None] = mapped_column(
        FaceNumeric, nullable=True,
    )

    stock_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_stock_update: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    store: Mapped["StoreModel"] = relationship(
        "StoreModel",
        back_populates="options",
    )
