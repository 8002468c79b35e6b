"""Tests for the structured logging system (ledger_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from ledger_kernel.exceptions import PeriodLockedError, UnbalancedEntryError
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state around each test, then restore the suite config."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """JSON-lines output."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "ledger_kernel.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("transaction_posted", extra={"seq": 42, "total_amount": "10.00"})

        record = _parse_log(stream)
        assert record["seq"] == 42
        assert record["total_amount"] == "10.00"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        company_id = uuid4()
        LogContext.set(company_id=company_id, idempotency_key="key-1")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["company_id"] == str(company_id)
        assert record["idempotency_key"] == "key-1"

    def test_decimal_date_and_uuid_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        uid = uuid4()
        get_logger("test").info(
            "typed",
            extra={"amount": Decimal("12.50"), "on": date(2024, 3, 1), "txn": uid},
        )

        record = _parse_log(stream)
        assert record["amount"] == "12.50"
        assert record["on"] == "2024-03-01"
        assert record["txn"] == str(uid)

    def test_ledger_exception_attributes_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise PeriodLockedError(date(2024, 1, 15), "2024-01")
        except PeriodLockedError:
            get_logger("test").error("period_error", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "PERIOD_LOCKED"
        assert record["exc_type"] == "PeriodLockedError"
        assert record["exc_period_name"] == "2024-01"
        assert record["exc_transaction_date"] == "2024-01-15"
        assert "traceback" in record

    def test_unbalanced_entry_amounts_are_strings(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise UnbalancedEntryError(Decimal("100.00"), Decimal("90.00"))
        except UnbalancedEntryError:
            get_logger("test").warning("unbalanced_entry", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_debits"] == "100.00"
        assert record["exc_credits"] == "90.00"

    def test_no_context_fields_when_empty(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("bare_message")

        record = _parse_log(stream)
        assert "company_id" not in record
        assert "actor_id" not in record

    def test_debug_suppressed_at_info(self):
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
    """Context propagation."""

    def test_set_and_get(self):
        LogContext.set(correlation_id="x", operation="post_transaction")
        assert LogContext.get_all() == {"correlation_id": "x", "operation": "post_transaction"}

    def test_clear(self):
        LogContext.set(correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}

    def test_bind_restores_previous_value(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner"):
            assert LogContext.get_all()["actor_id"] == "inner"
        assert LogContext.get_all()["actor_id"] == "outer"

    def test_bind_restores_none(self):
        with LogContext.bind(idempotency_key="temp"):
            assert LogContext.get_all()["idempotency_key"] == "temp"
        assert "idempotency_key" not in LogContext.get_all()

    def test_bind_skips_none_and_unknown_fields(self):
        with LogContext.bind(company_id=None, not_a_field="x", operation="op"):
            assert LogContext.get_all() == {"operation": "op"}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Initialization."""

    def test_idempotent(self):
        h1, _ = _make_handler()
        configure_logging(handler=h1)
        h2, _ = _make_handler()
        configure_logging(handler=h2)

        # pytest may attach its own capture handlers; count only ours
        ours = [
            h for h in logging.getLogger("ledger_kernel").handlers
            if isinstance(h.formatter, StructuredFormatter)
        ]
        assert ours == [h1]

    def test_get_logger_returns_child(self):
        assert get_logger("services.ledger_engine").name == "ledger_kernel.services.ledger_engine"

    def test_logger_hierarchy(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler, level=logging.DEBUG)
        get_logger("deep.nested.module").debug("hierarchy_test")

        record = _parse_log(stream)
        assert record["logger"] == "ledger_kernel.deep.nested.module"
