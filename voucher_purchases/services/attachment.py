"""
AttachmentNotifier -- push generated voucher codes to storefront products.

Contract:
    ``attach_generated(order_id)`` sends every GENERATED, not yet synced
    ledger record that has a reference code to the storefront product its
    option maps to, grouped per product, and reports what happened.

Architecture: voucher_purchases/services.  Uses CatalogStore for product
    lookup and stock, and the StorefrontClient protocol for I/O.

Invariants enforced:
    - Only unsynced codes are sent, and stock grows by the number of codes
      the storefront accepted in this call, so a repeated run never
      double-counts stock.
    - Voucher status is never changed here: the money is spent and the
      codes exist whatever the storefront says.

Failure modes:
    - A StorefrontError for one product is logged and recorded in the
      summary; remaining products are still attempted.

Non-goals:
    - Does NOT call ``session.commit()``.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.exceptions import StorefrontError
from voucher_kernel.logging_config import LogContext, get_logger
from voucher_purchases.clients.storefront import StorefrontClient
from voucher_purchases.domain.types import AttachmentSummary, VoucherStatus
from voucher_purchases.models.purchase import VoucherDetailModel
from voucher_purchases.services.catalog_store import CatalogStore
from voucher_purchases.services.order_service import get_order

logger = get_logger("purchases.attachment")


class AttachmentNotifier:
    """Downstream code attachment for generated vouchers."""

    def __init__(
        self,
        session: Session,
        storefront: StorefrontClient,
        clock: Clock | None = None,
        catalog: CatalogStore | None = None,
    ):
        self._session = session
        self._storefront = storefront
        self._clock = clock or SystemClock()
        self._catalog = catalog or CatalogStore(session, self._clock)

    def attach_generated(self, order_id: UUID) -> AttachmentSummary:
        order = get_order(self._session, order_id)

        records = self._session.execute(
            select(VoucherDetailModel)
            .where(
                VoucherDetailModel.order_id == order.id,
                VoucherDetailModel.status == VoucherStatus.GENERATED.value,
                VoucherDetailModel.storefront_synced.is_(False),
            )
            .order_by(VoucherDetailModel.sequence_number)
        ).scalars().all()

        with LogContext.bind(
            order_id=order.id,
            order_number=order.order_number,
            store_id=order.store_id,
        ):
            if not records:
                logger.info("attachment_nothing_to_send")
                return AttachmentSummary(order_id=order.id)

            token = order.store.storefront_access_token
            if not token:
                logger.warning(
                    "attachment_storefront_token_missing",
                    extra={"records": len(records)},
                )
                return AttachmentSummary(order_id=order.id, codes_skipped=len(records))

            groups, skipped = self._group_by_product(order.store_id, records)

            attached = 0
            rejected = 0
            failed_products: list[str] = []

            for product_id, group in groups.items():
                codes = [record.reference for record in group]
                try:
                    result = self._storefront.attach_codes(token, product_id, codes)
                except StorefrontError:
                    logger.error(
                        "attachment_product_failed",
                        extra={"product_id": product_id, "codes": len(codes)},
                        exc_info=True,
                    )
                    failed_products.append(product_id)
                    continue

                accepted = set(result.accepted)
                now = self._clock.now()
                newly_synced = 0
                for record in group:
                    if record.reference in accepted:
                        record.storefront_synced = True
                        record.storefront_synced_at = now
                        newly_synced += 1

                self._catalog.increment_stock(order.store_id, product_id, newly_synced)
                attached += newly_synced
                rejected += len(group) - newly_synced

            self._session.flush()

            summary = AttachmentSummary(
                order_id=order.id,
                products_attempted=len(groups),
                codes_attached=attached,
                codes_rejected=rejected,
                codes_skipped=skipped,
                failed_products=tuple(failed_products),
            )
            logger.info(
                "attachment_completed",
                extra={
                    "products_attempted": summary.products_attempted,
                    "codes_attached": attached,
                    "codes_rejected": rejected,
                    "codes_skipped": skipped,
                    "failed_products": len(failed_products),
                },
            )
        return summary

    def _group_by_product(
        self,
        store_id: UUID,
        records: list[VoucherDetailModel],
    ) -> tuple[dict[str, list[VoucherDetailModel]], int]:
        groups: dict[str, list[VoucherDetailModel]] = {}
        product_for_option: dict[str, str | None] = {}
        skipped = 0

        for record in records:
            if not record.reference:
                logger.warning(
                    "attachment_reference_missing",
                    extra={"external_id": record.external_id},
                )
                skipped += 1
                continue

            option_code = record.item.option_code
            if option_code not in product_for_option:
                product_for_option[option_code] = self._catalog.destination_product_for(
                    store_id, option_code,
                )
            product_id = product_for_option[option_code]
            if product_id is None:
                logger.warning(
                    "attachment_destination_missing",
                    extra={"option_code": option_code},
                )
                skipped += 1
                continue

            groups.setdefault(product_id, []).append(record)

        return groups, skipped
