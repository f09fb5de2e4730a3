"""
ORM models for purchase orders, their items, and the per-unit voucher ledger.

Contract:
    PurchaseOrderModel is the aggregate root.  It owns PurchaseItemModel
    rows and VoucherDetailModel rows (cascade delete-orphan on both), so
    deleting a draft removes the whole aggregate in one flush.  Ledger rows
    reference their item for option and face value lookups but are not
    owned by it.

Architecture: voucher_purchases/models.  Imports from voucher_kernel.db only.

Invariants enforced:
    - ``order_number`` is UNIQUE; allocated by SequenceService.
    - ``external_id`` is UNIQUE across the whole ledger.
    - (order_id, sequence_number) is UNIQUE; ``last_voucher_sequence`` on
      the order is the high-water mark, so a sequence is never reused even
      after the record holding it was deleted.
    - Status columns store ``PurchaseOrderStatus`` / ``VoucherStatus``
      values; the enum accessors reject anything else.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from voucher_kernel.db.base import TimestampedBase, UUIDString
from voucher_kernel.db.types import (
    FACE_VALUE_DECIMAL_PLACES,
    WHOLESALE_DECIMAL_PLACES,
    CurrencyCode,
    FaceNumeric,
    WholesaleNumeric,
    line_total,
)
from voucher_purchases.domain.types import (
    FailureReason,
    OrderStatusView,
    PurchaseOrderStatus,
    VoucherStatus,
)

if TYPE_CHECKING:
    from voucher_purchases.models.catalog import StoreModel


class PurchaseOrderModel(TimestampedBase):
    """A merchant's bulk voucher purchase."""

    __tablename__ = "purchase_orders"

    __table_args__ = (
        Index("ix_purchase_orders_store_status", "store_id", "status"),
    )

    store_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stores.id"),
        nullable=False,
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    order_number: Mapped[str] = mapped_column(
        String(30), nullable=False, unique=True,
    )
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=PurchaseOrderStatus.DRAFT.value,
    )
    total_wholesale_cost: Mapped[Decimal] = mapped_column(
        WholesaleNumeric, nullable=False, default=Decimal("0"),
    )
    currency: Mapped[str] = mapped_column(CurrencyCode, nullable=False)
    is_sandbox: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    vouchers_ordered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    vouchers_generated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    vouchers_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_voucher_sequence: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False,
    )

    balance_before: Mapped[Decimal | None] = mapped_column(
        WholesaleNumeric, nullable=True,
    )
    balance_after: Mapped[Decimal | None] = mapped_column(
        WholesaleNumeric, nullable=True,
    )
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    processing_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)
    success_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    navigation_url: Mapped[str | None] = mapped_column(String(255), nullable=True)

    store: Mapped["StoreModel"] = relationship("StoreModel")

    items: Mapped[list["PurchaseItemModel"]] = relationship(
        "PurchaseItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PurchaseItemModel.line_number",
    )

    details: Mapped[list["VoucherDetailModel"]] = relationship(
        "VoucherDetailModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="VoucherDetailModel.sequence_number",
    )

    @property
    def order_status(self) -> PurchaseOrderStatus:
        return PurchaseOrderStatus(self.status)

    def recompute_totals(self) -> None:
        """Order totals are the sum of their items; nothing else writes them."""
        self.total_wholesale_cost = sum(
            (item.total_wholesale_cost for item in self.items),
            Decimal("0"),
        )
        self.vouchers_ordered = sum(item.quantity_ordered for item in self.items)

    def to_view(self) -> OrderStatusView:
        return OrderStatusView(
            order_id=self.id,
            order_number=self.order_number,
            store_id=self.store_id,
            status=self.order_status,
            total_wholesale_cost=self.total_wholesale_cost,
            currency=self.currency,
            vouchers_ordered=self.vouchers_ordered,
            vouchers_generated=self.vouchers_generated,
            vouchers_failed=self.vouchers_failed,
            balance_before=self.balance_before,
            balance_after=self.balance_after,
            processing_started_at=self.processing_started_at,
            processing_completed_at=self.processing_completed_at,
            error_message=self.error_message,
            success_message=self.success_message,
            navigation_url=self.navigation_url,
            failure_reason=(
                FailureReason(self.failure_reason) if self.failure_reason else None
            ),
            created_at=self.created_at,
        )


class PurchaseItemModel(TimestampedBase):
    """One voucher option within an order."""

    __tablename__ = "purchase_items"

    __table_args__ = (
        UniqueConstraint("order_id", "line_number", name="uq_purchase_item_line"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    product_type_code: Mapped[str] = mapped_column(String(50), nullable=False)
    product_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    provider_code: Mapped[str | None] = mapped_column(String(100), nullable=True)
    option_code: Mapped[str] = mapped_column(String(100), nullable=False)
    product_name: Mapped[str | None] = mapped_column(String(300), nullable=True)
    option_name: Mapped[str | None] = mapped_column(String(300), nullable=True)

    quantity_ordered: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_face_value: Mapped[Decimal] = mapped_column(FaceNumeric, nullable=False)
    unit_wholesale_price: Mapped[Decimal] = mapped_column(
        WholesaleNumeric, nullable=False,
    )
    total_face_value: Mapped[Decimal] = mapped_column(FaceNumeric, nullable=False)
    total_wholesale_cost: Mapped[Decimal] = mapped_column(
        WholesaleNumeric, nullable=False,
    )
    currency: Mapped[str] = mapped_column(CurrencyCode, nullable=False)

    vouchers_generated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    vouchers_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="items",
    )

    def recompute_totals(self) -> None:
        """Line totals follow quantity and unit prices; called after any change."""
        self.total_wholesale_cost = line_total(
            self.quantity_ordered, self.unit_wholesale_price, WHOLESALE_DECIMAL_PLACES,
        )
        self.total_face_value = line_total(
            self.quantity_ordered, self.unit_face_value, FACE_VALUE_DECIMAL_PLACES,
        )


class VoucherDetailModel(TimestampedBase):
    """One physical voucher unit: the unit of work sent to the provider."""

    __tablename__ = "voucher_details"

    __table_args__ = (
        UniqueConstraint("order_id", "sequence_number", name="uq_voucher_order_seq"),
        Index("ix_voucher_details_order_status", "order_id", "status"),
        Index("ix_voucher_details_item", "item_id"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("purchase_items.id", ondelete="CASCADE"),
        nullable=False,
    )
    external_id: Mapped[str] = mapped_column(
        String(160), nullable=False, unique=True,
    )
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=VoucherStatus.PENDING.value,
    )
    operation_succeeded: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    serial_number: Mapped[str | None] = mapped_column(String(200), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(500), nullable=True)
    redeem_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    settled_amount: Mapped[Decimal | None] = mapped_column(
        WholesaleNumeric, nullable=True,
    )
    wholesale_amount: Mapped[Decimal | None] = mapped_column(
        WholesaleNumeric, nullable=True,
    )
    transaction_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    provider_transaction_id: Mapped[str | None] = mapped_column(
        String(200), nullable=True,
    )
    provider_response: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True,
    )
    error_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    request_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    response_received_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    storefront_synced: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False,
    )
    storefront_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    order: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel",
        back_populates="details",
    )
    item: Mapped["PurchaseItemModel"] = relationship("PurchaseItemModel")

    @property
    def voucher_status(self) -> VoucherStatus:
        return VoucherStatus(self.status)
