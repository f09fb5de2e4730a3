"""Pure purchase-order domain: status enums, transitions, DTOs and pacing."""

from voucher_purchases.domain.pacer import RateLimitPacer
from voucher_purchases.domain.types import (
    EDITABLE_STATUSES,
    POST_PROCESSING_STATUSES,
    VALID_TRANSITIONS,
    AttachmentSummary,
    ConfirmResult,
    FailureReason,
    ItemSpec,
    OrderStatusView,
    PurchaseOrderStatus,
    ReconciliationResult,
    RetryResult,
    VoucherOutcome,
    VoucherStatus,
    can_transition,
    derive_final_status,
    external_id_for,
    insufficient_balance_message,
)

__all__ = [
    "EDITABLE_STATUSES",
    "POST_PROCESSING_STATUSES",
    "VALID_TRANSITIONS",
    "AttachmentSummary",
    "ConfirmResult",
    "FailureReason",
    "ItemSpec",
    "OrderStatusView",
    "PurchaseOrderStatus",
    "RateLimitPacer",
    "ReconciliationResult",
    "RetryResult",
    "VoucherOutcome",
    "VoucherStatus",
    "can_transition",
    "derive_final_status",
    "external_id_for",
    "insufficient_balance_message",
]
