"""
Tests for the log formatters and request context.

Run with: pytest tests/test_logging.py -v
"""

from __future__ import annotations

import json
import logging
import sys

from backend.app.core.logging_config import (
    JSONFormatter,
    PrettyFormatter,
    get_request_context,
    set_request_context,
)


def _record(msg="Panic dispatched", exc_info=None, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "backend.app.alerts.dispatcher", logging.INFO, __file__, 10, msg, (), exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def setup_method(self):
        set_request_context()

    def teardown_method(self):
        set_request_context()

    def test_dispatch_fields_are_promoted(self):
        entry = json.loads(JSONFormatter().format(
            _record(alert_id="a-1", channel="SMS", provider="twilio-sms", unrelated="x"),
        ))
        assert entry["message"] == "Panic dispatched"
        assert entry["alert_id"] == "a-1"
        assert entry["channel"] == "SMS"
        assert entry["provider"] == "twilio-sms"
        assert "unrelated" not in entry
        assert "context" not in entry

    def test_request_context_included(self):
        set_request_context(request_id="abc123", endpoint="/api/v1/panic")
        entry = json.loads(JSONFormatter().format(_record()))
        assert entry["context"] == {"request_id": "abc123", "endpoint": "/api/v1/panic"}

    def test_exception_summary(self):
        try:
            raise RuntimeError("gateway down")
        except RuntimeError:
            exc_info = sys.exc_info()
        entry = json.loads(JSONFormatter().format(_record(exc_info=exc_info)))
        assert entry["exception"] == {"type": "RuntimeError", "message": "gateway down"}

    def test_non_ascii_preserved(self):
        entry = JSONFormatter().format(_record(msg="Alerta para Ana García"))
        assert "García" in entry


class TestPrettyFormatter:

    def teardown_method(self):
        set_request_context()

    def test_tags_shown_inline(self):
        set_request_context(request_id="0123456789abcdef")
        line = PrettyFormatter().format(_record(alert_id="alert-xyz-123", channel="WHATSAPP"))
        assert "[01234567]" in line
        assert "<alert-xy>" in line
        assert "(WHATSAPP)" in line

    def test_plain_record(self):
        line = PrettyFormatter().format(_record())
        assert line.endswith("backend.app.alerts.dispatcher: Panic dispatched")


def test_context_can_be_cleared():
    set_request_context(request_id="r1")
    assert get_request_context() == {"request_id": "r1"}
    set_request_context()
    assert get_request_context() == {}
