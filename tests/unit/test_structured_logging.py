"""
Unit tests for structured logging.

Verifies:
- One JSON object per record with ts, level, logger and message
- extra fields and LogContext fields are merged into the payload
- Decimal values are emitted as strings
- LogContext.bind restores the previous values on exit
- Ledger exceptions contribute code and attributes
"""

import json
import logging
import sys
from decimal import Decimal

from station_ledger.exceptions import DuplicateBatchError
from station_ledger.logging_config import LogContext, StructuredFormatter, get_logger


def _format(record) -> dict:
    return json.loads(StructuredFormatter().format(record))


def _record(msg="event", **extra):
    record = logging.LogRecord("station_ledger.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_basic_fields(self):
        payload = _format(_record("batch_committed"))
        assert payload["message"] == "batch_committed"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "station_ledger.test"
        assert "ts" in payload

    def test_extra_fields_and_decimal_as_string(self):
        payload = _format(_record(total_amount=Decimal("200.30"), reference="REF100"))
        assert payload["total_amount"] == "200.30"
        assert payload["reference"] == "REF100"

    def test_context_fields_included(self):
        with LogContext.bind(operation="batch_commit", correlation_id="abc"):
            payload = _format(_record())
        assert payload["operation"] == "batch_commit"
        assert payload["correlation_id"] == "abc"

    def test_exception_attributes(self):
        try:
            raise DuplicateBatchError("2026-01-05", "REF100")
        except DuplicateBatchError:
            record = logging.LogRecord(
                "station_ledger.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )
        payload = _format(record)
        assert payload["exc_type"] == "DuplicateBatchError"
        assert payload["exc_code"] == "DUPLICATE_BATCH"
        assert payload["exc_reference"] == "REF100"


class TestLogContext:
    def test_bind_restores_previous_value(self):
        LogContext.set(operation="outer")
        with LogContext.bind(operation="inner", batch_id="b1"):
            assert LogContext.get_all()["operation"] == "inner"
            assert LogContext.get_all()["batch_id"] == "b1"
        assert LogContext.get_all() == {"operation": "outer"}

    def test_clear(self):
        LogContext.set(actor="maria", correlation_id="x")
        LogContext.clear()
        assert LogContext.get_all() == {}


def test_get_logger_namespace():
    assert get_logger("services.balance").name == "station_ledger.services.balance"
