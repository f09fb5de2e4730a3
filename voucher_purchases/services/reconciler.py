"""
BalanceReconciler -- refresh balance and pricing right before spending.

Responsibility:
    Authenticates once for the order's store, replaces every item's unit
    wholesale price with the provider's current minimum wholesale value,
    recomputes line and order totals, snapshots the balance, and returns a
    sufficiency verdict compared in integer minor units.  The amount
    required is the cost of the units still PENDING; units already
    generated were paid for out of the balance being checked.

Architecture position:
    voucher_purchases > services.  Called by OrderOrchestrator.confirm();
    also usable standalone as the merchant-facing balance check.

Invariants enforced:
    - Idempotent on price: with unchanged upstream prices a second run
      leaves every item total exactly as the first run did.
    - A FAILED order is reset to PENDING only when it failed for lack of
      funds; orders that failed in processing recover through
      retry_failed / refresh_status instead.
    - Catalog write-back runs in a SAVEPOINT and can never change the
      verdict.

Failure modes:
    - OrderNotFoundError, StoreNotFoundError.
    - ProviderAuthenticationError / ProviderTransportError /
      ProviderPricingError propagate; nothing is flushed for a failed
      reconciliation beyond what the caller rolls back.

Non-goals:
    - Does NOT call ``session.commit()``.
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from voucher_kernel.db.types import (
    WHOLESALE_DECIMAL_PLACES,
    line_total,
    round_wholesale,
    to_minor_units,
)
from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.exceptions import ProviderPricingError, StoreNotFoundError
from voucher_kernel.logging_config import LogContext, get_logger
from voucher_purchases.clients.provider import OptionPricing, VoucherProvider
from voucher_purchases.domain.types import (
    FailureReason,
    PurchaseOrderStatus,
    ReconciliationResult,
    VoucherStatus,
)
from voucher_purchases.models.purchase import PurchaseOrderModel, VoucherDetailModel
from voucher_purchases.services.catalog_store import CatalogStore, provider_credentials
from voucher_purchases.services.order_service import get_order, transition_order

logger = get_logger("purchases.reconciler")


class BalanceReconciler:
    """
    Balance and pricing reconciliation for one order.

    Contract:
        ``reconcile(order_id)`` returns a ReconciliationResult carrying the
        authenticated provider session for reuse by the caller.
    """

    def __init__(
        self,
        session: Session,
        provider: VoucherProvider,
        clock: Clock | None = None,
        catalog: CatalogStore | None = None,
    ):
        self._session = session
        self._provider = provider
        self._clock = clock or SystemClock()
        self._catalog = catalog or CatalogStore(session, self._clock)

    def reconcile(self, order_id: UUID) -> ReconciliationResult:
        order = get_order(self._session, order_id, for_update=True)
        store = order.store
        if store is None:
            raise StoreNotFoundError(str(order.store_id))

        with LogContext.bind(
            order_id=order.id,
            order_number=order.order_number,
            store_id=order.store_id,
        ):
            provider_session = self._provider.authenticate(provider_credentials(store))
            balance = provider_session.balance

            store.provider_balance = round_wholesale(balance)
            store.balance_updated_at = self._clock.now()

            for item in order.items:
                pricing = self._provider.get_option_pricing(
                    provider_session, item.option_code,
                )
                if pricing.min_wholesale_value <= 0:
                    raise ProviderPricingError(
                        item.option_code, "no wholesale price available",
                    )

                new_price = round_wholesale(pricing.min_wholesale_value)
                if new_price != item.unit_wholesale_price:
                    logger.info(
                        "item_price_refreshed",
                        extra={
                            "option_code": item.option_code,
                            "old_price": item.unit_wholesale_price,
                            "new_price": new_price,
                        },
                    )
                    item.unit_wholesale_price = new_price
                item.recompute_totals()

                self._write_back_pricing(order.store_id, pricing)

            order.recompute_totals()
            order.balance_before = round_wholesale(balance)

            if (
                order.order_status == PurchaseOrderStatus.FAILED
                and order.failure_reason == FailureReason.INSUFFICIENT_BALANCE.value
            ):
                transition_order(order, PurchaseOrderStatus.PENDING)
                order.error_message = None
                order.failure_reason = None
                order.processing_completed_at = None

            self._session.flush()

            total_cost = self._outstanding_cost(order)
            balance_minor = to_minor_units(balance, rounding=ROUND_FLOOR)
            total_cost_minor = to_minor_units(total_cost, rounding=ROUND_CEILING)
            sufficient = balance_minor >= total_cost_minor

            logger.info(
                "order_reconciled",
                extra={
                    "order_total": order.total_wholesale_cost,
                    "balance_minor": balance_minor,
                    "total_cost_minor": total_cost_minor,
                    "sufficient": sufficient,
                },
            )

        return ReconciliationResult(
            order_id=order.id,
            sufficient=sufficient,
            balance=Decimal(balance),
            total_cost=total_cost,
            balance_minor=balance_minor,
            total_cost_minor=total_cost_minor,
            session=provider_session,
        )

    def _write_back_pricing(self, store_id: UUID, pricing: OptionPricing) -> None:
        savepoint = self._session.begin_nested()
        try:
            self._catalog.apply_pricing(store_id, pricing)
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            logger.warning(
                "catalog_pricing_write_back_failed",
                extra={"option_code": pricing.option_code},
                exc_info=True,
            )

    def _outstanding_cost(self, order: PurchaseOrderModel) -> Decimal:
        """Cost of the PENDING units at current unit prices."""
        rows = self._session.execute(
            select(VoucherDetailModel.item_id, func.count())
            .where(
                VoucherDetailModel.order_id == order.id,
                VoucherDetailModel.status == VoucherStatus.PENDING.value,
            )
            .group_by(VoucherDetailModel.item_id)
        ).all()
        pending = {str(item_id): count for item_id, count in rows}
        total = Decimal("0")
        for item in order.items:
            count = pending.get(str(item.id), 0)
            if count:
                total += line_total(count, item.unit_wholesale_price, WHOLESALE_DECIMAL_PLACES)
        return round_wholesale(total)
