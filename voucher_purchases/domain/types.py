"""
voucher_purchases.domain.types -- Status enums, transition table and DTOs.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections; services convert ORM rows into these before
returning them to callers.

Invariants enforced:
    - Order status changes only along ``VALID_TRANSITIONS``; nothing ever
      returns to DRAFT.
    - DRAFT and PENDING are the only editable states.
    - Terminal order status is derived from ledger counts by
      ``derive_final_status`` and nowhere else.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from voucher_purchases.clients.provider import ProviderSession


# =============================================================================
# Status enums
# =============================================================================


class PurchaseOrderStatus(str, Enum):
    """Purchase order lifecycle status."""

    DRAFT = "draft"  # Editable, deletable
    PENDING = "pending"  # Submitted, still editable
    PROCESSING = "processing"  # Vouchers being issued
    COMPLETED = "completed"  # Every unit generated
    PARTIALLY_COMPLETED = "partially_completed"  # Some units failed
    FAILED = "failed"  # Funding failure or no unit generated
    CANCELLED = "cancelled"  # Cancelled by the merchant


class VoucherStatus(str, Enum):
    """Per-unit ledger record status."""

    PENDING = "pending"
    PROCESSING = "processing"  # Request in flight
    GENERATED = "generated"  # Provider issued the voucher
    FAILED = "failed"
    CANCELLED = "cancelled"


class FailureReason(str, Enum):
    """Why an order ended up FAILED."""

    INSUFFICIENT_BALANCE = "insufficient_balance"
    PROCESSING = "processing"  # Every unit failed


S = PurchaseOrderStatus

VALID_TRANSITIONS: dict[PurchaseOrderStatus, frozenset[PurchaseOrderStatus]] = {
    S.DRAFT: frozenset({S.PENDING, S.FAILED, S.CANCELLED}),
    S.PENDING: frozenset({S.PROCESSING, S.FAILED, S.CANCELLED}),
    S.PROCESSING: frozenset(
        {S.COMPLETED, S.PARTIALLY_COMPLETED, S.FAILED, S.PENDING}
    ),
    # Funding failures re-enter the flow through reconciliation; a
    # refresh after retrying failed units may promote the status.
    S.FAILED: frozenset({S.PENDING, S.PARTIALLY_COMPLETED, S.COMPLETED}),
    S.PARTIALLY_COMPLETED: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}

del S

EDITABLE_STATUSES: frozenset[PurchaseOrderStatus] = frozenset(
    {PurchaseOrderStatus.DRAFT, PurchaseOrderStatus.PENDING}
)

POST_PROCESSING_STATUSES: frozenset[PurchaseOrderStatus] = frozenset(
    {
        PurchaseOrderStatus.COMPLETED,
        PurchaseOrderStatus.PARTIALLY_COMPLETED,
        PurchaseOrderStatus.FAILED,
    }
)


def can_transition(
    from_status: PurchaseOrderStatus,
    to_status: PurchaseOrderStatus,
) -> bool:
    return to_status in VALID_TRANSITIONS[from_status]


def derive_final_status(generated: int, failed: int) -> PurchaseOrderStatus:
    """
    Terminal status from resolved ledger counts.

    COMPLETED when nothing failed, PARTIALLY_COMPLETED when both outcomes
    occurred, FAILED when nothing was generated.
    """
    if failed == 0:
        return PurchaseOrderStatus.COMPLETED
    if generated > 0:
        return PurchaseOrderStatus.PARTIALLY_COMPLETED
    return PurchaseOrderStatus.FAILED


def insufficient_balance_message(required: Decimal, available: Decimal) -> str:
    return f"Insufficient balance. Required: {required}, Available: {available}"


def external_id_for(order_number: str, option_code: str, sequence: int) -> str:
    """
    Idempotency key presented to the provider for one voucher unit.

    Example:
        external_id_for("PO-20250115-001", "GIFT-10", 3)
        -> "PO-20250115-001-GIFT-10-003"
    """
    return f"{order_number}-{option_code}-{sequence:03d}"


# =============================================================================
# Input DTOs
# =============================================================================


@dataclass(frozen=True)
class ItemSpec:
    """A voucher option the merchant wants to buy.

    Prices are snapshots from the catalog at add time; reconciliation
    replaces the wholesale price with the provider's current one.
    """

    option_code: str
    quantity: int
    unit_face_value: Decimal
    unit_wholesale_price: Decimal
    product_type_code: str = "Voucher"
    product_code: str | None = None
    provider_code: str | None = None
    product_name: str | None = None
    option_name: str | None = None


# =============================================================================
# Result DTOs
# =============================================================================


@dataclass(frozen=True)
class OrderStatusView:
    """Read model returned to callers polling an order."""

    order_id: UUID
    order_number: str
    store_id: UUID
    status: PurchaseOrderStatus
    total_wholesale_cost: Decimal
    currency: str
    vouchers_ordered: int
    vouchers_generated: int
    vouchers_failed: int
    balance_before: Decimal | None = None
    balance_after: Decimal | None = None
    processing_started_at: datetime | None = None
    processing_completed_at: datetime | None = None
    error_message: str | None = None
    success_message: str | None = None
    navigation_url: str | None = None
    failure_reason: FailureReason | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ReconciliationResult:
    """Sufficiency verdict plus the figures shown to the merchant.

    ``session`` is the authenticated provider session obtained during
    reconciliation; the orchestrator threads it through every voucher
    execution of the same confirm run.  ``total_cost`` covers only the
    units still to be issued.
    """

    order_id: UUID
    sufficient: bool
    balance: Decimal
    total_cost: Decimal
    balance_minor: int
    total_cost_minor: int
    session: ProviderSession | None = field(default=None, repr=False)


@dataclass(frozen=True)
class VoucherOutcome:
    """Result of one execution attempt for a ledger record."""

    detail_id: UUID
    external_id: str
    status: VoucherStatus
    operation_succeeded: bool
    retry_count: int
    error_text: str | None = None
    serial_number: str | None = None
    reference: str | None = None
    response_time_ms: int | None = None


@dataclass(frozen=True)
class AttachmentSummary:
    """Outcome of pushing generated codes to the storefront."""

    order_id: UUID
    products_attempted: int = 0
    codes_attached: int = 0
    codes_rejected: int = 0
    codes_skipped: int = 0  # No reference code or no destination product
    failed_products: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConfirmResult:
    """Returned by ``OrderOrchestrator.confirm``."""

    order_id: UUID
    status: PurchaseOrderStatus
    reconciliation: ReconciliationResult
    vouchers_generated: int = 0
    vouchers_failed: int = 0
    attempted: int = 0
    transport_failures: int = 0
    attachment: AttachmentSummary | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class RetryResult:
    """Returned by ``OrderOrchestrator.retry_failed``."""

    order_id: UUID
    attempted: int
    generated: int
    still_failed: int
    outcomes: tuple[VoucherOutcome, ...] = ()
    vouchers_generated: int = 0
    vouchers_failed: int = 0

