"""Tests for the structured logging system (voucher_kernel/logging_config.py)."""

import json
import logging
import threading
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from voucher_kernel.exceptions import VoucherTransportError
from voucher_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "voucher_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("voucher_generated", extra={"retry_count": 2, "status": "generated"})

        record = _parse_log(stream)
        assert record["retry_count"] == 2
        assert record["status"] == "generated"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(order_number="PO-20250115-001", external_id="PO-20250115-001-GIFT-10-001")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["order_number"] == "PO-20250115-001"
        assert record["external_id"] == "PO-20250115-001-GIFT-10-001"

    def test_decimal_and_uuid_serialized_as_strings(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "amounts", extra={"order_ref": uid, "balance": Decimal("12.3400")},
        )

        record = _parse_log(stream)
        assert record["order_ref"] == str(uid)
        assert record["balance"] == "12.3400"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_kernel_exception_code_and_attributes_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise VoucherTransportError("PO-1-GIFT-10-001", "timed out", 1)
        except VoucherTransportError:
            get_logger("test").error("unit_failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "VOUCHER_TRANSPORT_FAILED"
        assert record["exc_external_id"] == "PO-1-GIFT-10-001"
        assert record["exc_retry_count"] == 1

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "order_id" not in record
        assert "correlation_id" not in record

    def test_debug_suppressed_at_info_level(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        logger = get_logger("test")
        logger.info("first")
        logger.warning("second", extra={"k": "v"})
        logger.debug("third")

        logs = _parse_all_logs(stream)
        assert [r["message"] for r in logs] == ["first", "second"]


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get(self):
        LogContext.set(correlation_id="x", order_id="y")
        assert LogContext.get_all() == {"correlation_id": "x", "order_id": "y"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_context_manager(self):
        LogContext.set(order_id="outer")
        with LogContext.bind(order_id="inner"):
            assert LogContext.get_all()["order_id"] == "inner"
        assert LogContext.get_all()["order_id"] == "outer"

    def test_bind_restores_none(self):
        assert "store_id" not in LogContext.get_all()
        with LogContext.bind(store_id="temp"):
            assert LogContext.get_all()["store_id"] == "temp"
        assert "store_id" not in LogContext.get_all()

    def test_bind_stringifies_and_ignores_unknown_fields(self):
        uid = uuid4()
        with LogContext.bind(order_id=uid, not_a_field="x", external_id=None):
            ctx = LogContext.get_all()
        assert ctx == {"order_id": str(uid)}

    def test_context_isolated_between_threads(self):
        LogContext.set(order_id="main-order")
        seen: dict[str, str] = {}

        def worker():
            with LogContext.bind(order_id="worker-order"):
                seen.update(LogContext.get_all())

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()

        assert seen["order_id"] == "worker-order"
        assert LogContext.get_all()["order_id"] == "main-order"


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)
        root = logging.getLogger("voucher_kernel")
        assert len(root.handlers) == 1

    def test_get_logger_returns_child(self):
        logger = get_logger("purchases.executor")
        assert logger.name == "voucher_kernel.purchases.executor"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["message"] == "hierarchy_test"
        assert record["logger"] == "voucher_kernel.deep.nested.module"
