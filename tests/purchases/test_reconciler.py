"""
Tests for voucher_purchases.services.reconciler.BalanceReconciler.

Covers price refresh, total recomputation, the sufficiency verdict in
minor units, the funding-failure reset, and the catalog write-back.
"""

from decimal import Decimal
from unittest.mock import patch
from uuid import uuid4

import pytest
from sqlalchemy import select

from voucher_kernel.exceptions import (
    OrderNotFoundError,
    ProviderAuthenticationError,
    ProviderPricingError,
)
from voucher_purchases.domain.types import FailureReason, PurchaseOrderStatus, VoucherStatus
from voucher_purchases.models.catalog import StoreModel
from voucher_purchases.models.purchase import PurchaseOrderModel, VoucherDetailModel
from voucher_purchases.services.catalog_store import CatalogStore
from voucher_purchases.services.reconciler import BalanceReconciler


@pytest.fixture
def reconciler(session, provider, clock):
    return BalanceReconciler(session, provider, clock)


@pytest.fixture
def gift_order(orders, draft, gift_spec):
    orders.add_item(draft.order_id, gift_spec(quantity=3, price="9.5"))
    return draft


class TestVerdict:
    def test_sufficient(self, reconciler, gift_order):
        result = reconciler.reconcile(gift_order.order_id)

        assert result.sufficient is True
        assert result.total_cost == Decimal("28.5000")
        assert result.balance == Decimal("1000.00")
        assert result.total_cost_minor == 2850
        assert result.balance_minor == 100000
        assert result.session is not None

    def test_insufficient(self, reconciler, provider, gift_order):
        provider.balance = Decimal("10.00")
        result = reconciler.reconcile(gift_order.order_id)

        assert result.sufficient is False
        assert result.balance_minor == 1000

    def test_balance_exactly_equal_is_sufficient(self, reconciler, provider, gift_order):
        provider.balance = Decimal("28.50")
        assert reconciler.reconcile(gift_order.order_id).sufficient is True

    def test_sub_cent_shortfall_is_insufficient(self, reconciler, provider, orders, draft, gift_spec):
        orders.add_item(draft.order_id, gift_spec(quantity=1))
        provider.prices["GIFT-10"] = Decimal("10.0049")
        provider.balance = Decimal("10.00")

        result = reconciler.reconcile(draft.order_id)

        assert result.sufficient is False
        assert result.total_cost_minor == 1001
        assert result.balance_minor == 1000

    def test_sub_cent_balance_not_rounded_up(self, reconciler, provider, gift_order):
        provider.balance = Decimal("28.4950")
        result = reconciler.reconcile(gift_order.order_id)

        assert result.balance_minor == 2849
        assert result.sufficient is False

    def test_generated_units_not_required_again(self, session, reconciler, provider, gift_order):
        first = session.execute(
            select(VoucherDetailModel)
            .where(VoucherDetailModel.order_id == gift_order.order_id)
            .order_by(VoucherDetailModel.sequence_number)
        ).scalars().first()
        first.status = VoucherStatus.GENERATED.value
        session.flush()
        provider.balance = Decimal("19.00")

        result = reconciler.reconcile(gift_order.order_id)

        assert result.total_cost == Decimal("19.0000")
        assert result.sufficient is True
        order = session.get(PurchaseOrderModel, gift_order.order_id)
        assert order.total_wholesale_cost == Decimal("28.5000")

    def test_authenticates_once_per_reconciliation(self, reconciler, provider, orders, gift_order, game_spec):
        orders.add_item(gift_order.order_id, game_spec())
        reconciler.reconcile(gift_order.order_id)

        assert provider.auth_calls == 1
        assert provider.pricing_calls == ["GIFT-10", "GAME-25"]


class TestPriceRefresh:
    def test_overwrites_item_price_and_totals(self, session, reconciler, provider, gift_order):
        provider.prices["GIFT-10"] = Decimal("9.1125")

        result = reconciler.reconcile(gift_order.order_id)

        order = session.get(PurchaseOrderModel, gift_order.order_id)
        item = order.items[0]
        assert item.unit_wholesale_price == Decimal("9.1125")
        assert item.total_wholesale_cost == Decimal("27.3375")
        assert order.total_wholesale_cost == Decimal("27.3375")
        assert result.total_cost == Decimal("27.3375")

    def test_idempotent_on_unchanged_price(self, session, reconciler, provider, gift_order):
        provider.prices["GIFT-10"] = Decimal("9.87654")

        first = reconciler.reconcile(gift_order.order_id)
        item_total = session.get(PurchaseOrderModel, gift_order.order_id).items[0].total_wholesale_cost
        second = reconciler.reconcile(gift_order.order_id)

        assert first.total_cost == second.total_cost
        assert (
            session.get(PurchaseOrderModel, gift_order.order_id).items[0].total_wholesale_cost
            == item_total
        )

    def test_logs_price_change(self, reconciler, provider, gift_order, captured_logs):
        provider.prices["GIFT-10"] = Decimal("9.0")
        reconciler.reconcile(gift_order.order_id)

        changes = [r for r in captured_logs() if r["message"] == "item_price_refreshed"]
        assert len(changes) == 1
        assert changes[0]["new_price"] == "9.0000"

    def test_balance_snapshot(self, session, reconciler, provider, store, clock, gift_order):
        provider.balance = Decimal("500.25")
        reconciler.reconcile(gift_order.order_id)

        order = session.get(PurchaseOrderModel, gift_order.order_id)
        assert order.balance_before == Decimal("500.25")
        assert session.get(StoreModel, store.id).provider_balance == Decimal("500.25")
        assert store.balance_updated_at == clock.now()

    def test_zero_price_rejected(self, reconciler, provider, gift_order):
        provider.prices["GIFT-10"] = Decimal("0")
        with pytest.raises(ProviderPricingError):
            reconciler.reconcile(gift_order.order_id)


class TestFailedReset:
    def _fail(self, session, order_id, reason):
        order = session.get(PurchaseOrderModel, order_id)
        order.status = PurchaseOrderStatus.FAILED.value
        order.failure_reason = reason.value
        order.error_message = "previous failure"
        session.flush()
        return order

    def test_funding_failure_reset_to_pending(self, session, reconciler, gift_order):
        order = self._fail(session, gift_order.order_id, FailureReason.INSUFFICIENT_BALANCE)

        reconciler.reconcile(gift_order.order_id)

        assert order.order_status == PurchaseOrderStatus.PENDING
        assert order.error_message is None
        assert order.failure_reason is None

    def test_processing_failure_not_reset(self, session, reconciler, gift_order):
        order = self._fail(session, gift_order.order_id, FailureReason.PROCESSING)

        reconciler.reconcile(gift_order.order_id)

        assert order.order_status == PurchaseOrderStatus.FAILED
        assert order.error_message == "previous failure"


class TestCatalogWriteBack:
    def test_catalog_price_updated(self, reconciler, provider, catalog, gift_order):
        provider.prices["GIFT-10"] = Decimal("10.0")
        reconciler.reconcile(gift_order.order_id)

        option = catalog["GIFT-10"]
        assert option.wholesale_price == Decimal("10.0000")
        assert option.original_price == Decimal("10.0000")
        # 35.625 / 9.5 = 3.75 conversion ratio carried over
        assert option.store_currency_price == Decimal("37.5000")

    def test_write_back_failure_does_not_change_verdict(self, reconciler, gift_order, captured_logs):
        with patch.object(CatalogStore, "apply_pricing", side_effect=RuntimeError("catalog down")):
            result = reconciler.reconcile(gift_order.order_id)

        assert result.sufficient is True
        assert any(
            r["message"] == "catalog_pricing_write_back_failed" for r in captured_logs()
        )


class TestFailures:
    def test_unknown_order(self, reconciler):
        with pytest.raises(OrderNotFoundError):
            reconciler.reconcile(uuid4())

    def test_auth_failure_propagates(self, reconciler, provider, gift_order, auth_rejected):
        provider.auth_error = auth_rejected
        with pytest.raises(ProviderAuthenticationError):
            reconciler.reconcile(gift_order.order_id)
        assert provider.pricing_calls == []
