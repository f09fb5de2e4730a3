"""
TransactionExecutor -- issue one voucher unit for one ledger record.

Contract:
    ``execute(detail_id, provider_session=None)`` sends a single-unit
    DoTransaction keyed by the record's external id and records the
    outcome on the ledger row.

Architecture: voucher_purchases/services.  Imports from domain, models,
    clients, and kernel services.

Invariants enforced:
    - The external id is the idempotency key; a retry re-sends the same id.
    - The PROCESSING mark is committed before the provider is called, and
      every outcome is committed before ``execute`` returns or raises, so
      the ledger never loses a unit that may have been issued upstream.
    - The provider is paid in face value terms: the request carries the
      item's unit face value, never its wholesale price.
    - Transport failures (network, timeout, non-2xx, failed standalone
      authentication) increment ``retry_count`` and raise
      VoucherTransportError.  A provider-reported business failure on a
      first attempt leaves ``retry_count`` alone; a business failure on a
      re-attempt counts against the retry cap.
    - Durations use ``time.monotonic``; timestamps use the injected Clock.

Failure modes:
    - VoucherNotFoundError, VoucherNotExecutableError (preconditions).
    - VoucherTransportError after the FAILED state is durable.
    - Anything else propagates with the record still PROCESSING; the
      orchestrator's recovery returns such records to PENDING.
"""

from __future__ import annotations

import time
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from voucher_kernel.domain.clock import Clock, SystemClock
from voucher_kernel.exceptions import (
    ProviderError,
    VoucherNotExecutableError,
    VoucherNotFoundError,
    VoucherTransportError,
)
from voucher_kernel.logging_config import LogContext, get_logger
from voucher_purchases.clients.provider import (
    IssueVoucherResult,
    ProviderSession,
    VoucherProvider,
)
from voucher_purchases.domain.types import VoucherOutcome, VoucherStatus
from voucher_purchases.models.purchase import VoucherDetailModel
from voucher_purchases.services.catalog_store import provider_credentials

logger = get_logger("purchases.executor")

DEFAULT_MAX_RETRIES = 3


class TransactionExecutor:
    """Per-unit voucher issuing.

    Non-goals:
        - Does NOT retry by itself; retry_failed decides what to re-send.
        - Does NOT pace calls; the orchestrator owns the pacer.
    """

    def __init__(
        self,
        session: Session,
        provider: VoucherProvider,
        clock: Clock | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ):
        self._session = session
        self._provider = provider
        self._clock = clock or SystemClock()
        self._max_retries = max_retries

    def is_executable(self, detail: VoucherDetailModel) -> bool:
        status = detail.voucher_status
        if status == VoucherStatus.PENDING:
            return True
        return status == VoucherStatus.FAILED and detail.retry_count < self._max_retries

    def execute(
        self,
        detail_id: UUID,
        provider_session: ProviderSession | None = None,
    ) -> VoucherOutcome:
        """
        Issue the voucher unit for ``detail_id``.

        Args:
            detail_id: Ledger record to execute.
            provider_session: Session shared by a confirm or retry run.
                When omitted the executor authenticates for the order's
                store itself.

        Raises:
            VoucherNotFoundError: unknown record.
            VoucherNotExecutableError: record not PENDING, or FAILED with
                its retries used up.
            VoucherTransportError: the unit failed in transport; the
                ledger already shows FAILED with the incremented count.
        """
        detail = self._session.execute(
            select(VoucherDetailModel)
            .where(VoucherDetailModel.id == detail_id)
            .with_for_update()
        ).scalar_one_or_none()
        if detail is None:
            raise VoucherNotFoundError(str(detail_id))

        if not self.is_executable(detail):
            raise VoucherNotExecutableError(
                detail.external_id, detail.status, detail.retry_count,
            )

        is_retry = detail.voucher_status == VoucherStatus.FAILED
        item = detail.item
        order = detail.order

        with LogContext.bind(
            order_id=order.id,
            order_number=order.order_number,
            external_id=detail.external_id,
        ):
            detail.status = VoucherStatus.PROCESSING.value
            detail.request_sent_at = self._clock.now()
            self._session.commit()

            start = time.monotonic()
            try:
                session = provider_session or self._provider.authenticate(
                    provider_credentials(order.store)
                )
                result = self._provider.issue_voucher(
                    session,
                    external_id=detail.external_id,
                    product_type_code=item.product_type_code,
                    option_code=item.option_code,
                    face_amount=item.unit_face_value,
                    quantity=1,
                )
            except ProviderError as exc:
                elapsed_ms = int((time.monotonic() - start) * 1000)
                self._record_transport_failure(detail, str(exc), elapsed_ms)
                raise VoucherTransportError(
                    detail.external_id, str(exc), detail.retry_count,
                ) from exc

            elapsed_ms = int((time.monotonic() - start) * 1000)
            self._record_response(detail, result, elapsed_ms, is_retry)

        return VoucherOutcome(
            detail_id=detail.id,
            external_id=detail.external_id,
            status=detail.voucher_status,
            operation_succeeded=bool(detail.operation_succeeded),
            retry_count=detail.retry_count,
            error_text=detail.error_text,
            serial_number=detail.serial_number,
            reference=detail.reference,
            response_time_ms=detail.response_time_ms,
        )

    def _record_transport_failure(
        self,
        detail: VoucherDetailModel,
        reason: str,
        elapsed_ms: int,
    ) -> None:
        now = self._clock.now()
        detail.status = VoucherStatus.FAILED.value
        detail.operation_succeeded = False
        detail.error_text = reason or "API call failed"
        detail.retry_count += 1
        detail.response_received_at = now
        detail.response_time_ms = elapsed_ms
        detail.processed_at = now
        self._session.commit()

        logger.warning(
            "voucher_transport_failed",
            extra={
                "reason": reason,
                "retry_count": detail.retry_count,
                "response_time_ms": elapsed_ms,
            },
        )

    def _record_response(
        self,
        detail: VoucherDetailModel,
        result: IssueVoucherResult,
        elapsed_ms: int,
        is_retry: bool,
    ) -> None:
        now = self._clock.now()
        detail.response_received_at = now
        detail.response_time_ms = elapsed_ms
        detail.provider_response = result.raw or None
        detail.processed_at = now

        if result.succeeded:
            detail.status = VoucherStatus.GENERATED.value
            detail.operation_succeeded = True
            detail.error_text = None
            detail.serial_number = result.serial_number
            detail.reference = result.reference
            detail.redeem_url = result.redeem_url
            detail.settled_amount = result.settled_amount
            detail.wholesale_amount = result.wholesale_amount
            detail.transaction_id = result.transaction_id
            detail.provider_transaction_id = result.provider_transaction_id
        else:
            detail.status = VoucherStatus.FAILED.value
            detail.operation_succeeded = False
            detail.error_text = result.error_text or "Unknown error"
            if is_retry:
                detail.retry_count += 1

        self._session.commit()

        if result.succeeded:
            logger.info(
                "voucher_generated",
                extra={
                    "serial_number": detail.serial_number,
                    "transaction_id": detail.transaction_id,
                    "response_time_ms": elapsed_ms,
                },
            )
        else:
            logger.warning(
                "voucher_business_failure",
                extra={
                    "error_text": detail.error_text,
                    "retry_count": detail.retry_count,
                    "response_time_ms": elapsed_ms,
                },
            )
