"""
Typed exception hierarchy for the voucher purchasing engine.

Every error carries a class-level ``code`` (machine-readable, stable across
message rewording) and stores its context as attributes, so the excluded
API layer can map errors to responses without parsing messages.

    VoucherKernelError (base)
    |
    +-- OrderError
    |   +-- OrderNotFoundError
    |   +-- OrderNotEditableError
    |   +-- OrderNotConfirmableError
    |   +-- OrderNotDeletableError
    |   +-- EmptyOrderError
    |   +-- InvalidQuantityError
    |   +-- PurchaseItemNotFoundError
    |   +-- InvalidStatusTransitionError
    |   +-- LedgerShrinkError
    |
    +-- StoreError
    |   +-- StoreNotFoundError
    |
    +-- ProviderError
    |   +-- ProviderAuthenticationError
    |   +-- ProviderTransportError
    |   +-- ProviderPricingError
    |
    +-- VoucherError
    |   +-- VoucherNotFoundError
    |   +-- VoucherNotExecutableError
    |   +-- VoucherTransportError
    |
    +-- StorefrontError
    |   +-- StorefrontAttachmentError
    |
    +-- ConfigurationError

Category        | Code                        | When Raised
----------------|-----------------------------|------------------------------------------
Order           | ORDER_NOT_FOUND             | Order id does not exist
                | ORDER_NOT_EDITABLE          | Edit attempted outside DRAFT/PENDING
                | ORDER_NOT_CONFIRMABLE       | confirm() on a processed/cancelled order
                | ORDER_NOT_DELETABLE         | Delete attempted outside DRAFT
                | EMPTY_ORDER                 | submit/confirm with zero items
                | INVALID_QUANTITY            | Quantity < 1
                | PURCHASE_ITEM_NOT_FOUND     | Item id not in this order
                | INVALID_STATUS_TRANSITION   | Transition not in VALID_TRANSITIONS
                | LEDGER_SHRINK_REFUSED       | Resize would delete issued vouchers
----------------|-----------------------------|------------------------------------------
Store           | STORE_NOT_FOUND             | Store id does not exist
----------------|-----------------------------|------------------------------------------
Provider        | PROVIDER_AUTH_FAILED        | Authenticate rejected or unreachable
                | PROVIDER_TRANSPORT_ERROR    | Timeout, connection error, non-2xx
                | PROVIDER_PRICING_ERROR      | Option pricing unavailable
----------------|-----------------------------|------------------------------------------
Voucher         | VOUCHER_NOT_FOUND           | Ledger record id does not exist
                | VOUCHER_NOT_EXECUTABLE      | Record not PENDING / retries exhausted
                | VOUCHER_TRANSPORT_FAILED    | One unit failed in transport (retryable)
----------------|-----------------------------|------------------------------------------
Storefront      | STOREFRONT_ATTACH_FAILED    | Storefront rejected a code attachment
----------------|-----------------------------|------------------------------------------
Config          | CONFIGURATION_ERROR         | Invalid settings file or value

Insufficient balance is NOT an exception: it is a terminal
FAILED order carrying a structured message, returned as a result.
"""

from __future__ import annotations


class VoucherKernelError(Exception):
    """Base exception for all voucher engine errors."""

    code: str = "VOUCHER_KERNEL_ERROR"


# Order-related exceptions


class OrderError(VoucherKernelError):
    """Base exception for purchase-order errors."""

    code: str = "ORDER_ERROR"


class OrderNotFoundError(OrderError):
    """Purchase order with given ID was not found."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Purchase order not found: {order_id}")


class OrderNotEditableError(OrderError):
    """Purchase order is not in an editable status."""

    code: str = "ORDER_NOT_EDITABLE"

    def __init__(self, order_id: str, status: str, action: str = "modify"):
        self.order_id = order_id
        self.status = status
        self.action = action
        super().__init__(
            f"Cannot {action} purchase order {order_id} in {status} status"
        )


class OrderNotConfirmableError(OrderError):
    """Purchase order cannot be confirmed from its current status."""

    code: str = "ORDER_NOT_CONFIRMABLE"

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(
            f"Cannot confirm purchase order {order_id} in {status} status"
        )


class OrderNotDeletableError(OrderError):
    """Only DRAFT orders may be deleted."""

    code: str = "ORDER_NOT_DELETABLE"

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(
            f"Cannot delete purchase order {order_id} in {status} status. "
            "Only DRAFT orders can be deleted."
        )


class EmptyOrderError(OrderError):
    """Purchase order has no items."""

    code: str = "EMPTY_ORDER"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(
            f"Purchase order {order_id} must have at least one item"
        )


class InvalidQuantityError(OrderError):
    """Quantity must be a positive integer."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: object):
        self.quantity = quantity
        super().__init__(f"Quantity must be at least 1, got {quantity!r}")


class PurchaseItemNotFoundError(OrderError):
    """Purchase item does not exist within the given order."""

    code: str = "PURCHASE_ITEM_NOT_FOUND"

    def __init__(self, order_id: str, item_id: str):
        self.order_id = order_id
        self.item_id = item_id
        super().__init__(
            f"Purchase item {item_id} not found in order {order_id}"
        )


class InvalidStatusTransitionError(OrderError):
    """Requested order status transition is not allowed."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, order_id: str, from_status: str, to_status: str):
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Invalid transition for order {order_id}: "
            f"{from_status} -> {to_status}"
        )


class LedgerShrinkError(OrderError):
    """Resizing would delete ledger records that are no longer PENDING."""

    code: str = "LEDGER_SHRINK_REFUSED"

    def __init__(self, item_id: str, requested: int, removable: int):
        self.item_id = item_id
        self.requested = requested
        self.removable = removable
        super().__init__(
            f"Cannot remove {requested} voucher record(s) from item {item_id}: "
            f"only {removable} are still pending"
        )


# Store-related exceptions


class StoreError(VoucherKernelError):
    """Base exception for store errors."""

    code: str = "STORE_ERROR"


class StoreNotFoundError(StoreError):
    """Store with given ID was not found."""

    code: str = "STORE_NOT_FOUND"

    def __init__(self, store_id: str):
        self.store_id = store_id
        super().__init__(f"Store not found: {store_id}")


# Upstream provider exceptions


class ProviderError(VoucherKernelError):
    """Base exception for upstream voucher provider errors."""

    code: str = "PROVIDER_ERROR"


class ProviderAuthenticationError(ProviderError):
    """Authentication against the provider failed."""

    code: str = "PROVIDER_AUTH_FAILED"

    def __init__(self, store_id: str, reason: str):
        self.store_id = store_id
        self.reason = reason
        super().__init__(
            f"Provider authentication failed for store {store_id}: {reason}"
        )


class ProviderTransportError(ProviderError):
    """Network failure, timeout, or non-2xx response from the provider."""

    code: str = "PROVIDER_TRANSPORT_ERROR"

    def __init__(
        self,
        operation: str,
        reason: str,
        http_status: int | None = None,
    ):
        self.operation = operation
        self.reason = reason
        self.http_status = http_status
        super().__init__(f"{operation} failed: {reason}")


class ProviderPricingError(ProviderError):
    """Current pricing for an option could not be obtained."""

    code: str = "PROVIDER_PRICING_ERROR"

    def __init__(self, option_code: str, reason: str):
        self.option_code = option_code
        self.reason = reason
        super().__init__(
            f"Unable to get current pricing for {option_code}: {reason}"
        )


# Voucher ledger exceptions


class VoucherError(VoucherKernelError):
    """Base exception for voucher ledger errors."""

    code: str = "VOUCHER_ERROR"


class VoucherNotFoundError(VoucherError):
    """Voucher ledger record was not found."""

    code: str = "VOUCHER_NOT_FOUND"

    def __init__(self, detail_id: str):
        self.detail_id = detail_id
        super().__init__(f"Voucher record not found: {detail_id}")


class VoucherNotExecutableError(VoucherError):
    """Voucher record is not eligible for a (re-)attempt."""

    code: str = "VOUCHER_NOT_EXECUTABLE"

    def __init__(self, external_id: str, status: str, retry_count: int):
        self.external_id = external_id
        self.status = status
        self.retry_count = retry_count
        super().__init__(
            f"Voucher {external_id} cannot be executed "
            f"(status={status}, retry_count={retry_count})"
        )


class VoucherTransportError(VoucherError):
    """A single voucher unit failed in transport.

    Raised only after the ledger record has been durably marked FAILED
    with its retry_count incremented.
    """

    code: str = "VOUCHER_TRANSPORT_FAILED"

    def __init__(self, external_id: str, reason: str, retry_count: int):
        self.external_id = external_id
        self.reason = reason
        self.retry_count = retry_count
        super().__init__(f"Voucher {external_id} failed: {reason}")


# Storefront exceptions


class StorefrontError(VoucherKernelError):
    """Base exception for downstream storefront errors."""

    code: str = "STOREFRONT_ERROR"


class StorefrontAttachmentError(StorefrontError):
    """The storefront refused or failed a code attachment call."""

    code: str = "STOREFRONT_ATTACH_FAILED"

    def __init__(self, product_id: str, reason: str):
        self.product_id = product_id
        self.reason = reason
        super().__init__(
            f"Failed to attach codes to storefront product {product_id}: {reason}"
        )


# Configuration


class ConfigurationError(VoucherKernelError):
    """Settings file or value is invalid."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration for '{key}': {reason}")
