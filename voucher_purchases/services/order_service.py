"""
OrderService -- purchase order editing and status reads.

Responsibility:
    Everything a merchant does to an order before money is spent: create a
    draft, add / remove / resize items, submit, cancel, delete a draft, and
    read status.  Every edit keeps the voucher ledger in step with item
    quantities and recomputes order totals.

Architecture position:
    voucher_purchases > services.  Used directly by the API layer and by
    OrderOrchestrator (submit before processing).

Invariants enforced:
    - Items change only while the order is DRAFT or PENDING.
    - One ledger record per ordered unit.  New records continue from the
      order's ``last_voucher_sequence`` high-water mark, so a sequence
      number, and therefore an external id, is never handed out twice.
    - Shrinking deletes the highest-sequence PENDING records; records that
      already went to the provider are never deleted.
    - Every status change goes through ``transition_order``.
    - Validation failures raise before anything is mutated.

Failure modes:
    - OrderNotFoundError, StoreNotFoundError, PurchaseItemNotFoundError.
    - OrderNotEditableError, OrderNotDeletableError, EmptyOrderError.
    - InvalidQuantityError, LedgerShrinkError, InvalidStatusTransitionError.

Non-goals:
    - Does NOT call ``session.commit()`` -- caller controls boundaries.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from voucher_config.settings import ProviderSettings
from voucher_kernel.db.types import round_face_value, round_wholesale
from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.exceptions import (
    EmptyOrderError,
    InvalidQuantityError,
    InvalidStatusTransitionError,
    LedgerShrinkError,
    OrderNotDeletableError,
    OrderNotEditableError,
    OrderNotFoundError,
    PurchaseItemNotFoundError,
    StoreNotFoundError,
)
from voucher_kernel.logging_config import LogContext, get_logger
from voucher_kernel.services.sequence_service import SequenceService
from voucher_purchases.domain.types import (
    EDITABLE_STATUSES,
    ItemSpec,
    OrderStatusView,
    PurchaseOrderStatus,
    VoucherStatus,
    can_transition,
    external_id_for,
)
from voucher_purchases.models.catalog import StoreModel
from voucher_purchases.models.purchase import (
    PurchaseItemModel,
    PurchaseOrderModel,
    VoucherDetailModel,
)

logger = get_logger("purchases.orders")

DEFAULT_SETTLEMENT_CURRENCY = "USD"


def get_order(
    session: Session,
    order_id: UUID,
    for_update: bool = False,
) -> PurchaseOrderModel:
    """Load an order (optionally row-locked) or raise OrderNotFoundError."""
    stmt = select(PurchaseOrderModel).where(PurchaseOrderModel.id == order_id)
    if for_update:
        stmt = stmt.with_for_update()
    order = session.execute(stmt).scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(str(order_id))
    return order


def transition_order(
    order: PurchaseOrderModel,
    to_status: PurchaseOrderStatus,
) -> None:
    """The only place an order's status is written."""
    from_status = order.order_status
    if not can_transition(from_status, to_status):
        raise InvalidStatusTransitionError(
            str(order.id), from_status.value, to_status.value,
        )
    order.status = to_status.value
    logger.info(
        "order_status_changed",
        extra={
            "order_id": str(order.id),
            "from_status": from_status.value,
            "to_status": to_status.value,
        },
    )


def _validate_quantity(quantity: object) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantityError(quantity)
    return quantity


class OrderService:
    """
    Purchase order editing.

    Contract:
        create_draft / add_item / remove_item / resize_item / submit /
        cancel / delete_draft mutate and flush; get_status and
        list_for_store are reads.

    Guarantees:
        - Ledger size always equals the item's ``quantity_ordered`` after
          any successful edit.
        - ``total_wholesale_cost`` of the order equals the sum of its
          item line costs after any successful edit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: ProviderSettings | None = None,
        sequence_service: SequenceService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._currency = (
            settings.settlement_currency if settings else DEFAULT_SETTLEMENT_CURRENCY
        )
        self._sequence = sequence_service or SequenceService(session)

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_draft(self, store_id: UUID, user_id: UUID) -> OrderStatusView:
        """Open a DRAFT order with a freshly allocated order number."""
        store = self._session.get(StoreModel, store_id)
        if store is None:
            raise StoreNotFoundError(str(store_id))

        order_number = self._sequence.next_order_number(self._clock.today())
        order = PurchaseOrderModel(
            id=uuid4(),
            store_id=store.id,
            created_by_id=user_id,
            order_number=order_number,
            status=PurchaseOrderStatus.DRAFT.value,
            currency=self._currency,
            is_sandbox=store.sandbox,
            total_wholesale_cost=round_wholesale(0),
            vouchers_ordered=0,
            vouchers_generated=0,
            vouchers_failed=0,
            last_voucher_sequence=0,
        )
        self._session.add(order)
        self._session.flush()

        logger.info(
            "order_draft_created",
            extra={
                "order_id": str(order.id),
                "order_number": order_number,
                "store_id": str(store.id),
                "created_by": str(user_id),
            },
        )
        return order.to_view()

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def add_item(self, order_id: UUID, spec: ItemSpec) -> PurchaseItemModel:
        """
        Add a voucher option and create its ledger records immediately.

        Raises:
            OrderNotFoundError, OrderNotEditableError, InvalidQuantityError.
        """
        order = self._editable_order(order_id, action="add items to")
        quantity = _validate_quantity(spec.quantity)

        line_number = max((i.line_number for i in order.items), default=0) + 1
        item = PurchaseItemModel(
            id=uuid4(),
            line_number=line_number,
            product_type_code=spec.product_type_code,
            product_code=spec.product_code,
            provider_code=spec.provider_code,
            option_code=spec.option_code,
            product_name=spec.product_name,
            option_name=spec.option_name,
            quantity_ordered=quantity,
            unit_face_value=round_face_value(spec.unit_face_value),
            unit_wholesale_price=round_wholesale(spec.unit_wholesale_price),
            currency=order.currency,
            vouchers_generated=0,
            vouchers_failed=0,
            is_completed=False,
        )
        item.recompute_totals()
        order.items.append(item)

        self._append_records(order, item, quantity)
        order.recompute_totals()
        self._session.flush()

        with LogContext.bind(order_id=order.id, order_number=order.order_number):
            logger.info(
                "order_item_added",
                extra={
                    "item_id": str(item.id),
                    "option_code": item.option_code,
                    "quantity": quantity,
                    "line_cost": item.total_wholesale_cost,
                },
            )
        return item

    def remove_item(self, order_id: UUID, item_id: UUID) -> OrderStatusView:
        """
        Delete an item together with its ledger records.

        Raises:
            LedgerShrinkError: if any of the item's records already went to
                the provider.
        """
        order = self._editable_order(order_id, action="remove items from")
        item = self._find_item(order, item_id)

        records = self._records_for(order, item)
        pending = [r for r in records if r.voucher_status == VoucherStatus.PENDING]
        if len(pending) != len(records):
            raise LedgerShrinkError(str(item.id), len(records), len(pending))

        for record in records:
            order.details.remove(record)
        order.items.remove(item)
        order.recompute_totals()
        self._session.flush()

        with LogContext.bind(order_id=order.id, order_number=order.order_number):
            logger.info(
                "order_item_removed",
                extra={
                    "item_id": str(item_id),
                    "option_code": item.option_code,
                    "records_deleted": len(records),
                },
            )
        return order.to_view()

    def resize_item(
        self,
        order_id: UUID,
        item_id: UUID,
        quantity: int,
    ) -> PurchaseItemModel:
        """
        Change an item's quantity and reconcile its ledger records.

        Growing appends records after the order's high-water sequence;
        shrinking deletes the highest-sequence PENDING records.
        """
        order = self._editable_order(order_id, action="resize items in")
        item = self._find_item(order, item_id)
        quantity = _validate_quantity(quantity)

        records = self._records_for(order, item)
        delta = quantity - len(records)

        if delta < 0:
            pending = sorted(
                (r for r in records if r.voucher_status == VoucherStatus.PENDING),
                key=lambda r: r.sequence_number,
                reverse=True,
            )
            if len(pending) < -delta:
                raise LedgerShrinkError(str(item.id), -delta, len(pending))
            for record in pending[:-delta]:
                order.details.remove(record)
        elif delta > 0:
            self._append_records(order, item, delta)

        previous = item.quantity_ordered
        item.quantity_ordered = quantity
        item.recompute_totals()
        order.recompute_totals()
        self._session.flush()

        with LogContext.bind(order_id=order.id, order_number=order.order_number):
            logger.info(
                "order_item_resized",
                extra={
                    "item_id": str(item.id),
                    "previous_quantity": previous,
                    "quantity": quantity,
                    "records_delta": delta,
                },
            )
        return item

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def submit(self, order_id: UUID) -> OrderStatusView:
        """
        Move an editable order to PENDING, creating any missing ledger
        records first.  Existing records are left untouched.
        """
        order = self._editable_order(order_id, action="submit")
        if not order.items:
            raise EmptyOrderError(str(order.id))

        created = 0
        for item in order.items:
            missing = item.quantity_ordered - len(self._records_for(order, item))
            if missing > 0:
                self._append_records(order, item, missing)
                created += missing

        order.recompute_totals()
        if order.order_status == PurchaseOrderStatus.DRAFT:
            transition_order(order, PurchaseOrderStatus.PENDING)
        self._session.flush()

        with LogContext.bind(order_id=order.id, order_number=order.order_number):
            logger.info(
                "order_submitted",
                extra={
                    "records_created": created,
                    "vouchers_ordered": order.vouchers_ordered,
                    "total_wholesale_cost": order.total_wholesale_cost,
                },
            )
        return order.to_view()

    def cancel(self, order_id: UUID) -> OrderStatusView:
        """Cancel a DRAFT or PENDING order; its ledger records are cancelled too."""
        order = self._editable_order(order_id, action="cancel")

        transition_order(order, PurchaseOrderStatus.CANCELLED)
        for record in order.details:
            if record.voucher_status == VoucherStatus.PENDING:
                record.status = VoucherStatus.CANCELLED.value
        order.processing_completed_at = self._clock.now()
        self._session.flush()

        with LogContext.bind(order_id=order.id, order_number=order.order_number):
            logger.info("order_cancelled")
        return order.to_view()

    def delete_draft(self, order_id: UUID) -> None:
        """Delete a DRAFT order with its items and ledger records."""
        order = get_order(self._session, order_id, for_update=True)
        if order.order_status != PurchaseOrderStatus.DRAFT:
            raise OrderNotDeletableError(str(order.id), order.status)

        order_number = order.order_number
        record_count = len(order.details)
        self._session.delete(order)
        self._session.flush()

        logger.info(
            "order_draft_deleted",
            extra={
                "order_id": str(order_id),
                "order_number": order_number,
                "records_deleted": record_count,
            },
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_status(self, order_id: UUID) -> OrderStatusView:
        return get_order(self._session, order_id).to_view()

    def list_for_store(self, store_id: UUID) -> list[OrderStatusView]:
        """Status views for a store's orders, newest first."""
        orders = self._session.execute(
            select(PurchaseOrderModel)
            .where(PurchaseOrderModel.store_id == store_id)
            .order_by(
                PurchaseOrderModel.created_at.desc(),
                PurchaseOrderModel.order_number.desc(),
            )
        ).scalars().all()
        return [order.to_view() for order in orders]

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _editable_order(self, order_id: UUID, action: str) -> PurchaseOrderModel:
        order = get_order(self._session, order_id, for_update=True)
        if order.order_status not in EDITABLE_STATUSES:
            raise OrderNotEditableError(str(order.id), order.status, action)
        return order

    @staticmethod
    def _find_item(order: PurchaseOrderModel, item_id: UUID) -> PurchaseItemModel:
        for item in order.items:
            if str(item.id) == str(item_id):
                return item
        raise PurchaseItemNotFoundError(str(order.id), str(item_id))

    @staticmethod
    def _records_for(
        order: PurchaseOrderModel,
        item: PurchaseItemModel,
    ) -> list[VoucherDetailModel]:
        return [r for r in order.details if r.item is item]

    @staticmethod
    def _append_records(
        order: PurchaseOrderModel,
        item: PurchaseItemModel,
        count: int,
    ) -> None:
        for _ in range(count):
            order.last_voucher_sequence += 1
            sequence = order.last_voucher_sequence
            order.details.append(
                VoucherDetailModel(
                    id=uuid4(),
                    item=item,
                    external_id=external_id_for(
                        order.order_number, item.option_code, sequence,
                    ),
                    sequence_number=sequence,
                    status=VoucherStatus.PENDING.value,
                    retry_count=0,
                    storefront_synced=False,
                )
            )
