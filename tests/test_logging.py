"""Tests for the structured logging system (receivables_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest

from receivables_kernel.domain.documents import DocumentStatus
from receivables_kernel.exceptions import DocumentNotFoundError, ExceedsTargetBalanceError
from receivables_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state, then restore the suite-wide configuration."""
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


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


def _parse_log(stream: StringIO) -> dict:
    return _parse_all_logs(stream)[0]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("ledger").info("hello")

        record = _parse_log(stream)
        assert record["message"] == "hello"
        assert record["level"] == "INFO"
        assert record["logger"] == "receivables.ledger"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("ledger").info("applied", extra={"application_count": 2, "target_ids": (3, 4)})

        record = _parse_log(stream)
        assert record["application_count"] == 2
        assert record["target_ids"] == [3, 4]

    def test_domain_values_encoded(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("ledger").info(
            "values",
            extra={
                "amount": Decimal("12.50"),
                "as_of": date(2024, 3, 1),
                "status": DocumentStatus.PAGADO,
            },
        )

        record = _parse_log(stream)
        assert record["amount"] == "12.50"
        assert record["as_of"] == "2024-03-01"
        assert record["status"] == DocumentStatus.PAGADO.value

    def test_context_fields_win_over_extras(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(customer_id=7):
            get_logger("ledger").info("ctx", extra={"customer_id": "other"})

        assert _parse_log(stream)["customer_id"] == "7"

    def test_receivables_error_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ExceedsTargetBalanceError(42, "500.00", "400.00")
        except ExceedsTargetBalanceError:
            get_logger("ledger").warning("rejected", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ExceedsTargetBalanceError"
        assert record["exc_code"] == ExceedsTargetBalanceError.code
        assert record["exc_document_id"] == 42
        assert record["exc_available"] == "400.00"
        assert "Traceback" in record["traceback"]

    def test_plain_exception_has_no_code(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            get_logger("ledger").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_message"] == "boom"
        assert "exc_code" not in record


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    def test_set_and_get_all(self):
        LogContext.set(correlation_id="c-1", actor_id=None)
        assert LogContext.get_all() == {"correlation_id": "c-1"}

    def test_bind_restores_previous_values(self):
        LogContext.set(actor_id="outer")
        with LogContext.bind(actor_id="inner", document_id=5):
            assert LogContext.get_all() == {"actor_id": "inner", "document_id": "5"}
        assert LogContext.get_all() == {"actor_id": "outer"}

    def test_bind_rejects_unknown_fields(self):
        with pytest.raises(ValueError):
            LogContext.bind(tenant="x")

    def test_clear(self):
        LogContext.set(request_id="r-1")
        LogContext.clear()
        assert LogContext.get_all() == {}


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    def test_idempotent(self):
        first, first_stream = _make_handler()
        second, second_stream = _make_handler()
        configure_logging(handler=first)
        configure_logging(handler=second)

        get_logger("ledger").info("once")

        assert len(_parse_all_logs(first_stream)) == 1
        assert second_stream.getvalue() == ""
        assert logging.getLogger("receivables").handlers == [first]

    def test_level_by_name(self):
        handler, stream = _make_handler()
        configure_logging(level="warning", handler=handler)
        logger = get_logger("ledger")
        logger.info("hidden")
        logger.warning("shown")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["shown"]

    def test_does_not_propagate_to_root(self):
        configure_logging(handler=_make_handler()[0])
        assert logging.getLogger("receivables").propagate is False

    def test_not_found_error_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise DocumentNotFoundError(9)
        except DocumentNotFoundError:
            get_logger("stores").exception("missing")

        record = _parse_log(stream)
        assert record["level"] == "ERROR"
        assert record["exc_document_id"] == 9
