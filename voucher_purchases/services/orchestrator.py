"""
OrderOrchestrator -- end-to-end processing of a purchase order.

Responsibility:
    Drives confirm: reconcile, abort on insufficient funds, submit, mark
    PROCESSING, execute every pending unit in sequence order with pacing,
    snapshot the after-balance, roll up counts from the ledger, set the
    terminal status, and attach generated codes downstream.  Also owns
    retry of failed units, re-deriving status afterwards, and background
    confirmation.

Architecture position:
    voucher_purchases > services.  The top of the purchase flow; composes
    BalanceReconciler, TransactionExecutor, AttachmentNotifier and
    OrderService.

Invariants enforced:
    - One provider session per confirm / retry run, passed explicitly to
      every execution.
    - Per-unit failures never abort the run; they are recorded on the
      ledger.
    - Counters are recomputed from ledger status counts only after the
      full pass, never incrementally.
    - The terminal status comes from ``derive_final_status`` over those
      counts.
    - Once terminal, ``vouchers_generated + vouchers_failed ==
      vouchers_ordered``.
    - An attachment failure never changes the terminal status.

Failure modes:
    - Precondition errors (OrderNotFoundError, EmptyOrderError,
      OrderNotConfirmableError) raise before any upstream call.
    - Any other error during reconciliation or execution is recovered:
      rollback, an order left in PROCESSING goes back to PENDING, ledger
      records stuck in PROCESSING go back to PENDING (keeping their
      external ids), ``Processing failed: <error>`` is stored, and the
      error is re-raised.  confirm can then be re-run safely.
    - A resumed order that cannot afford its remaining units stays PENDING
      rather than FAILED; the vouchers it already bought are counted and
      attached.

Transaction boundaries:
    Unlike the editing services this class commits: after reconciliation,
    on entering PROCESSING, around each unit (inside the executor), and
    at the end of the run, so progress survives a crash mid-batch.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from voucher_config.settings import ProcessingSettings, VoucherSettings
from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.exceptions import (
    EmptyOrderError,
    OrderNotConfirmableError,
    ProviderError,
    VoucherTransportError,
)
from voucher_kernel.logging_config import LogContext, get_logger
from voucher_purchases.clients.provider import ProviderSession, VoucherProvider
from voucher_purchases.clients.storefront import StorefrontClient
from voucher_purchases.domain.pacer import RateLimitPacer
from voucher_purchases.domain.types import (
    EDITABLE_STATUSES,
    POST_PROCESSING_STATUSES,
    AttachmentSummary,
    ConfirmResult,
    FailureReason,
    OrderStatusView,
    PurchaseOrderStatus,
    ReconciliationResult,
    RetryResult,
    VoucherOutcome,
    VoucherStatus,
    derive_final_status,
    insufficient_balance_message,
)
from voucher_purchases.models.purchase import PurchaseOrderModel, VoucherDetailModel
from voucher_purchases.services.attachment import AttachmentNotifier
from voucher_purchases.services.catalog_store import CatalogStore, provider_credentials
from voucher_purchases.services.executor import TransactionExecutor
from voucher_purchases.services.order_service import (
    OrderService,
    get_order,
    transition_order,
)
from voucher_purchases.services.reconciler import BalanceReconciler

logger = get_logger("purchases.orchestrator")


class OrderOrchestrator:
    """
    Purchase order processing.

    Contract:
        - ``confirm()`` runs the full purchase flow and returns a
          ConfirmResult; insufficient funds is a result, not an exception.
        - ``retry_failed()`` re-sends FAILED units below the retry cap with
          their original external ids and refreshes counters, leaving the
          status alone.
        - ``refresh_status()`` re-derives the terminal status after a retry.
        - ``confirm_in_background()`` runs confirm on a worker thread with
          its own session and returns a Future.

    Non-goals:
        - No cooperative cancellation of a running confirm.
        - No protection against two concurrent confirms of the same order;
          the PROCESSING transition is the caller-visible gate.
    """

    def __init__(
        self,
        session: Session,
        provider: VoucherProvider,
        storefront: StorefrontClient,
        clock: Clock | None = None,
        settings: VoucherSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        session_factory: sessionmaker[Session] | None = None,
    ):
        self._session = session
        self._provider = provider
        self._storefront = storefront
        self._clock = clock or SystemClock()
        self._settings = settings
        self._processing = settings.processing if settings else ProcessingSettings()
        self._sleep = sleep
        self._session_factory = session_factory
        self._pool: ThreadPoolExecutor | None = None
        self._pool_lock = threading.Lock()

        catalog = CatalogStore(session, self._clock)
        self._orders = OrderService(
            session, self._clock, settings.provider if settings else None,
        )
        self._reconciler = BalanceReconciler(session, provider, self._clock, catalog)
        self._executor = TransactionExecutor(
            session, provider, self._clock, max_retries=self._processing.max_retries,
        )
        self._notifier = AttachmentNotifier(session, storefront, self._clock, catalog)

    # -------------------------------------------------------------------------
    # Confirm
    # -------------------------------------------------------------------------

    def confirm(self, order_id: UUID) -> ConfirmResult:
        """
        Process an order end to end.

        Preconditions:
            The order exists, has at least one item, and is DRAFT, PENDING,
            or FAILED for lack of funds.

        Raises:
            OrderNotFoundError, EmptyOrderError, OrderNotConfirmableError
            before any upstream call; otherwise whatever order-level error
            interrupted the run, after recovery.
        """
        order = get_order(self._session, order_id)
        self._check_confirmable(order)

        prior_status = order.order_status
        with LogContext.bind(
            order_id=order.id,
            order_number=order.order_number,
            store_id=order.store_id,
        ):
            logger.info(
                "order_confirm_started",
                extra={"prior_status": prior_status.value},
            )
            try:
                return self._run_confirm(order_id)
            except Exception as exc:
                self._recover(order_id, exc)
                raise

    def _check_confirmable(self, order: PurchaseOrderModel) -> None:
        status = order.order_status
        funding_failure = (
            status == PurchaseOrderStatus.FAILED
            and order.failure_reason == FailureReason.INSUFFICIENT_BALANCE.value
        )
        if status not in EDITABLE_STATUSES and not funding_failure:
            raise OrderNotConfirmableError(str(order.id), order.status)
        if not order.items:
            raise EmptyOrderError(str(order.id))

    def _run_confirm(self, order_id: UUID) -> ConfirmResult:
        start = time.monotonic()

        reconciliation = self._reconciler.reconcile(order_id)
        self._session.commit()

        order = get_order(self._session, order_id, for_update=True)

        if not reconciliation.sufficient:
            return self._stop_for_funds(order, reconciliation, start)

        if order.order_status in EDITABLE_STATUSES:
            self._orders.submit(order.id)

        transition_order(order, PurchaseOrderStatus.PROCESSING)
        order.processing_started_at = self._clock.now()
        order.processing_completed_at = None
        order.error_message = None
        order.failure_reason = None
        order.success_message = None
        order.navigation_url = None
        self._session.commit()

        pending_ids = self._session.execute(
            select(VoucherDetailModel.id)
            .where(
                VoucherDetailModel.order_id == order_id,
                VoucherDetailModel.status == VoucherStatus.PENDING.value,
            )
            .order_by(VoucherDetailModel.sequence_number)
        ).scalars().all()

        outcomes, transport_failures = self._execute_all(
            pending_ids, reconciliation.session,
        )

        order = get_order(self._session, order_id, for_update=True)
        self._snapshot_balance_after(order)

        generated, failed = self._rollup_counts(order)
        final_status = derive_final_status(generated, failed)
        transition_order(order, final_status)
        order.processing_completed_at = self._clock.now()
        if final_status == PurchaseOrderStatus.FAILED:
            order.failure_reason = FailureReason.PROCESSING.value
            order.error_message = (
                f"Processing failed: all {failed} voucher(s) failed to generate"
            )
        self._session.commit()

        logger.info(
            "order_processing_completed",
            extra={
                "status": final_status.value,
                "vouchers_generated": generated,
                "vouchers_failed": failed,
                "attempted": len(outcomes),
                "transport_failures": transport_failures,
            },
        )

        attachment = None
        if generated > 0:
            attachment = self._attach(order)

        return ConfirmResult(
            order_id=order.id,
            status=final_status,
            reconciliation=reconciliation,
            vouchers_generated=generated,
            vouchers_failed=failed,
            attempted=len(outcomes) + transport_failures,
            transport_failures=transport_failures,
            attachment=attachment,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    def _stop_for_funds(
        self,
        order: PurchaseOrderModel,
        reconciliation: ReconciliationResult,
        start: float,
    ) -> ConfirmResult:
        """
        End a confirm run that cannot afford its remaining units.

        An order with nothing generated yet becomes FAILED for lack of
        funds.  An order resumed after an interrupted run already holds
        purchased vouchers, so it stays PENDING (confirmable again after a
        top-up) with its counters rolled up and its codes attached.
        """
        generated, failed = self._rollup_counts(order)
        order.error_message = insufficient_balance_message(
            reconciliation.total_cost, reconciliation.balance,
        )
        if generated == 0:
            transition_order(order, PurchaseOrderStatus.FAILED)
            order.failure_reason = FailureReason.INSUFFICIENT_BALANCE.value
            order.processing_completed_at = self._clock.now()
        self._session.commit()

        logger.warning(
            "order_insufficient_balance",
            extra={
                "balance": reconciliation.balance,
                "total_cost": reconciliation.total_cost,
                "vouchers_generated": generated,
            },
        )

        attachment = None
        if self._has_unsynced_codes(order):
            attachment = self._attach(order)

        return ConfirmResult(
            order_id=order.id,
            status=order.order_status,
            reconciliation=reconciliation,
            vouchers_generated=generated,
            vouchers_failed=failed,
            attachment=attachment,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    # -------------------------------------------------------------------------
    # Retry / refresh
    # -------------------------------------------------------------------------

    def retry_failed(self, order_id: UUID) -> RetryResult:
        """
        Re-send FAILED units whose retry_count is below the cap.

        With nothing eligible this is a no-op: no upstream call, no counter
        or status change.
        """
        order = get_order(self._session, order_id)

        failed_ids = self._session.execute(
            select(VoucherDetailModel.id)
            .where(
                VoucherDetailModel.order_id == order.id,
                VoucherDetailModel.status == VoucherStatus.FAILED.value,
                VoucherDetailModel.retry_count < self._processing.max_retries,
            )
            .order_by(VoucherDetailModel.sequence_number)
        ).scalars().all()

        if not failed_ids:
            return RetryResult(
                order_id=order.id,
                attempted=0,
                generated=0,
                still_failed=0,
                vouchers_generated=order.vouchers_generated,
                vouchers_failed=order.vouchers_failed,
            )

        with LogContext.bind(
            order_id=order.id,
            order_number=order.order_number,
            store_id=order.store_id,
        ):
            logger.info("order_retry_started", extra={"candidates": len(failed_ids)})

            provider_session = self._provider.authenticate(
                provider_credentials(order.store)
            )
            outcomes, transport_failures = self._execute_all(
                failed_ids, provider_session,
            )

            order = get_order(self._session, order_id, for_update=True)
            generated, failed = self._rollup_counts(order)
            self._session.commit()

            newly_generated = sum(
                1 for o in outcomes if o.status == VoucherStatus.GENERATED
            )
            logger.info(
                "order_retry_completed",
                extra={
                    "attempted": len(failed_ids),
                    "generated": newly_generated,
                    "transport_failures": transport_failures,
                },
            )

        return RetryResult(
            order_id=order.id,
            attempted=len(failed_ids),
            generated=newly_generated,
            still_failed=len(failed_ids) - newly_generated,
            outcomes=tuple(outcomes),
            vouchers_generated=generated,
            vouchers_failed=failed,
        )

    def refresh_status(self, order_id: UUID) -> OrderStatusView:
        """
        Re-derive the terminal status of a processed order from its ledger.

        Orders that were never processed (including funding failures) are
        returned unchanged.  When new vouchers were generated since the last
        roll-up, their codes are attached downstream.
        """
        order = get_order(self._session, order_id, for_update=True)
        processed = (
            order.order_status in POST_PROCESSING_STATUSES
            and order.failure_reason != FailureReason.INSUFFICIENT_BALANCE.value
        )
        if not processed:
            return order.to_view()

        with LogContext.bind(
            order_id=order.id,
            order_number=order.order_number,
            store_id=order.store_id,
        ):
            generated, failed = self._rollup_counts(order)
            new_status = derive_final_status(generated, failed)
            if new_status != order.order_status:
                transition_order(order, new_status)
                order.processing_completed_at = self._clock.now()
                if new_status != PurchaseOrderStatus.FAILED:
                    order.failure_reason = None
                    order.error_message = None
            self._session.commit()

            if self._has_unsynced_codes(order):
                self._attach(order)

        return order.to_view()

    # -------------------------------------------------------------------------
    # Background
    # -------------------------------------------------------------------------

    def confirm_in_background(self, order_id: UUID) -> Future[ConfirmResult]:
        """
        Run ``confirm`` on a worker thread with a fresh session.

        The caller returns "processing started" immediately and polls
        ``OrderService.get_status`` for progress.

        Raises:
            RuntimeError: if the orchestrator was built without a session
                factory.
        """
        if self._session_factory is None:
            raise RuntimeError("confirm_in_background requires a session_factory")

        logger.info("order_confirm_queued", extra={"order_id": str(order_id)})
        return self._get_pool().submit(self._confirm_with_own_session, order_id)

    def shutdown(self, wait: bool = True) -> None:
        with self._pool_lock:
            if self._pool is not None:
                self._pool.shutdown(wait=wait)
                self._pool = None

    def _get_pool(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self._processing.background_workers,
                    thread_name_prefix="voucher-confirm",
                )
            return self._pool

    def _confirm_with_own_session(self, order_id: UUID) -> ConfirmResult:
        session = self._session_factory()
        try:
            worker = OrderOrchestrator(
                session,
                self._provider,
                self._storefront,
                clock=self._clock,
                settings=self._settings,
                sleep=self._sleep,
            )
            return worker.confirm(order_id)
        except Exception:
            logger.error(
                "order_background_confirm_failed",
                extra={"order_id": str(order_id)},
                exc_info=True,
            )
            raise
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _new_pacer(self) -> RateLimitPacer:
        return RateLimitPacer(
            every=self._processing.pace_every,
            pause_seconds=self._processing.pace_seconds,
            sleep=self._sleep,
        )

    def _execute_all(
        self,
        detail_ids: list[UUID],
        provider_session: ProviderSession | None,
    ) -> tuple[list[VoucherOutcome], int]:
        """Execute units in order; a unit that got through counts toward pacing."""
        pacer = self._new_pacer()
        outcomes: list[VoucherOutcome] = []
        transport_failures = 0

        for detail_id in detail_ids:
            try:
                outcome = self._executor.execute(detail_id, provider_session)
            except VoucherTransportError as exc:
                transport_failures += 1
                logger.warning(
                    "order_unit_transport_failed",
                    extra={"failed_external_id": exc.external_id},
                )
                continue
            outcomes.append(outcome)
            pacer.record()

        return outcomes, transport_failures

    def _snapshot_balance_after(self, order: PurchaseOrderModel) -> None:
        try:
            provider_session = self._provider.authenticate(
                provider_credentials(order.store)
            )
        except ProviderError:
            logger.warning("order_balance_after_unavailable", exc_info=True)
            return
        order.balance_after = provider_session.balance

    def _rollup_counts(self, order: PurchaseOrderModel) -> tuple[int, int]:
        """Recompute order and item counters from ledger status counts."""
        rows = self._session.execute(
            select(
                VoucherDetailModel.item_id,
                VoucherDetailModel.status,
                func.count(),
            )
            .where(VoucherDetailModel.order_id == order.id)
            .group_by(VoucherDetailModel.item_id, VoucherDetailModel.status)
        ).all()

        per_item: dict[str, dict[str, int]] = {}
        for item_id, status, count in rows:
            per_item.setdefault(str(item_id), {})[status] = count

        generated_total = 0
        failed_total = 0
        for item in order.items:
            counts = per_item.get(str(item.id), {})
            item.vouchers_generated = counts.get(VoucherStatus.GENERATED.value, 0)
            item.vouchers_failed = counts.get(VoucherStatus.FAILED.value, 0)
            item.is_completed = item.vouchers_generated == item.quantity_ordered
            generated_total += item.vouchers_generated
            failed_total += item.vouchers_failed

        order.vouchers_generated = generated_total
        order.vouchers_failed = failed_total
        self._session.flush()
        return generated_total, failed_total

    def _has_unsynced_codes(self, order: PurchaseOrderModel) -> bool:
        count = self._session.execute(
            select(func.count())
            .select_from(VoucherDetailModel)
            .where(
                VoucherDetailModel.order_id == order.id,
                VoucherDetailModel.status == VoucherStatus.GENERATED.value,
                VoucherDetailModel.storefront_synced.is_(False),
            )
        ).scalar_one()
        return count > 0

    def _attach(self, order: PurchaseOrderModel) -> AttachmentSummary | None:
        """Attach codes downstream; failures are logged and never re-raised."""
        try:
            summary = self._notifier.attach_generated(order.id)
            if summary.failed_products:
                order.success_message = (
                    f"{order.vouchers_generated} vouchers generated; storefront "
                    f"sync failed for {len(summary.failed_products)} product(s)."
                )
            else:
                order.success_message = (
                    f"{order.vouchers_generated} vouchers generated and synced to "
                    "the storefront. View updated stock levels."
                )
            order.navigation_url = f"/clients/stock/{order.store_id}"
            self._session.commit()
        except Exception:
            self._session.rollback()
            logger.error("order_attachment_failed", exc_info=True)
            return None
        return summary

    def _recover(self, order_id: UUID, exc: Exception) -> None:
        """Return the order to a resumable state after an order-level error."""
        try:
            self._session.rollback()
            order = self._session.get(PurchaseOrderModel, order_id, populate_existing=True)
            if order is None:
                return

            if order.order_status == PurchaseOrderStatus.PROCESSING:
                transition_order(order, PurchaseOrderStatus.PENDING)
                order.processing_started_at = None

            reset = self._session.execute(
                update(VoucherDetailModel)
                .where(
                    VoucherDetailModel.order_id == order_id,
                    VoucherDetailModel.status == VoucherStatus.PROCESSING.value,
                )
                .values(status=VoucherStatus.PENDING.value)
                .execution_options(synchronize_session="fetch")
            )
            order.error_message = f"Processing failed: {exc}"
            self._session.commit()

            logger.error(
                "order_confirm_failed",
                extra={
                    "error": str(exc),
                    "status": order.status,
                    "records_reset": reset.rowcount,
                },
                exc_info=exc,
            )
        except SQLAlchemyError:
            self._session.rollback()
            logger.error(
                "order_recovery_failed",
                extra={"error": str(exc)},
                exc_info=True,
            )
