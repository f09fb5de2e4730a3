"""
Tests for voucher_purchases.services.attachment.AttachmentNotifier.

Generated codes are grouped per storefront product, only accepted codes
are marked synced, and stock grows by exactly the newly accepted count.
"""

import pytest
from sqlalchemy import select

from voucher_purchases.domain.types import VoucherStatus
from voucher_purchases.models.purchase import VoucherDetailModel
from voucher_purchases.services.attachment import AttachmentNotifier


@pytest.fixture
def notifier(session, storefront, clock):
    return AttachmentNotifier(session, storefront, clock)


def _records(session, order_id):
    return session.execute(
        select(VoucherDetailModel)
        .where(VoucherDetailModel.order_id == order_id)
        .order_by(VoucherDetailModel.sequence_number)
    ).scalars().all()


def _generate(records):
    for record in records:
        record.status = VoucherStatus.GENERATED.value
        record.reference = f"CODE-{record.sequence_number}"


@pytest.fixture
def mixed_order(session, orders, draft, gift_spec, game_spec):
    """Two gift units and one game unit, all generated."""
    orders.add_item(draft.order_id, gift_spec(quantity=2))
    orders.add_item(draft.order_id, game_spec(quantity=1))
    _generate(_records(session, draft.order_id))
    session.flush()
    return draft


class TestAttachGenerated:
    def test_grouped_per_product(self, notifier, storefront, mixed_order):
        summary = notifier.attach_generated(mixed_order.order_id)

        assert sorted(storefront.calls) == [
            ("sf-token", "prod-100", ["CODE-1", "CODE-2"]),
            ("sf-token", "prod-200", ["CODE-3"]),
        ]
        assert summary.products_attempted == 2
        assert summary.codes_attached == 3
        assert summary.codes_rejected == 0

    def test_marks_synced_and_increments_stock(self, session, notifier, catalog, clock, mixed_order):
        notifier.attach_generated(mixed_order.order_id)

        records = _records(session, mixed_order.order_id)
        assert all(r.storefront_synced for r in records)
        assert all(r.storefront_synced_at == clock.now() for r in records)
        assert catalog["GIFT-10"].stock_quantity == 2
        assert catalog["GAME-25"].stock_quantity == 5

    def test_second_run_sends_nothing(self, notifier, storefront, catalog, mixed_order):
        notifier.attach_generated(mixed_order.order_id)
        summary = notifier.attach_generated(mixed_order.order_id)

        assert len(storefront.calls) == 2
        assert summary.codes_attached == 0
        assert catalog["GIFT-10"].stock_quantity == 2

    def test_rejected_codes_stay_unsynced(self, session, notifier, storefront, catalog, mixed_order):
        storefront.rejected = {"CODE-2"}

        summary = notifier.attach_generated(mixed_order.order_id)

        records = {r.reference: r for r in _records(session, mixed_order.order_id)}
        assert records["CODE-1"].storefront_synced is True
        assert records["CODE-2"].storefront_synced is False
        assert summary.codes_rejected == 1
        assert catalog["GIFT-10"].stock_quantity == 1

    def test_only_generated_records_sent(self, session, notifier, storefront, mixed_order):
        records = _records(session, mixed_order.order_id)
        records[1].status = VoucherStatus.FAILED.value
        session.flush()

        notifier.attach_generated(mixed_order.order_id)

        sent = [code for _, _, codes in storefront.calls for code in codes]
        assert sorted(sent) == ["CODE-1", "CODE-3"]


class TestAttachFailures:
    def test_product_failure_does_not_stop_others(self, session, notifier, storefront, catalog, mixed_order, captured_logs):
        storefront.failing_products = {"prod-100"}

        summary = notifier.attach_generated(mixed_order.order_id)

        assert summary.failed_products == ("prod-100",)
        assert summary.codes_attached == 1
        assert catalog["GAME-25"].stock_quantity == 5
        assert catalog["GIFT-10"].stock_quantity == 0
        records = _records(session, mixed_order.order_id)
        assert [r.storefront_synced for r in records] == [False, False, True]
        assert all(r.voucher_status == VoucherStatus.GENERATED for r in records)
        assert any(r["message"] == "attachment_product_failed" for r in captured_logs())

    def test_missing_token_skips_everything(self, notifier, storefront, store, mixed_order):
        store.storefront_access_token = None

        summary = notifier.attach_generated(mixed_order.order_id)

        assert storefront.calls == []
        assert summary.codes_skipped == 3

    def test_missing_reference_or_product_skipped(self, session, notifier, storefront, catalog, mixed_order):
        records = _records(session, mixed_order.order_id)
        records[0].reference = None
        catalog["GAME-25"].destination_product_id = None
        session.flush()

        summary = notifier.attach_generated(mixed_order.order_id)

        assert storefront.calls == [("sf-token", "prod-100", ["CODE-2"])]
        assert summary.codes_skipped == 2

    def test_nothing_generated(self, notifier, storefront, orders, draft, gift_spec):
        orders.add_item(draft.order_id, gift_spec())

        summary = notifier.attach_generated(draft.order_id)

        assert storefront.calls == []
        assert summary.products_attempted == 0
