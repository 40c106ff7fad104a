"""Tests for structured logging configuration."""

from __future__ import annotations

import json
import logging

from ruckplan.errors import SessionNotFound
from ruckplan.logging_config import JSONFormatter, get_logger, setup_logging
from ruckplan_api.observability import RequestIdFilter, reset_request_id, set_request_id


def _record(msg: str = "hello %s", args=("world",), exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(name="test", level=logging.INFO, pathname="test.py", lineno=1, msg=msg, args=args, exc_info=exc_info)


def test_json_formatter_outputs_valid_json():
    parsed = json.loads(JSONFormatter().format(_record()))
    assert parsed["message"] == "hello world"
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "test"
    assert "timestamp" in parsed
    assert parsed["location"].endswith(":1")
    assert "context" not in parsed


def test_json_formatter_includes_exception():
    try:
        raise ValueError("test error")
    except ValueError:
        import sys

        exc_info = sys.exc_info()
    parsed = json.loads(JSONFormatter().format(_record("fail", (), exc_info)))
    assert parsed["exception"]["type"] == "ValueError"
    assert parsed["exception"]["message"] == "test error"


def test_json_formatter_collects_ctx_extras():
    record = _record()
    record.ctx_session_id = "s-1"
    record.ctx_workouts = 12
    record.unrelated = "skip"
    parsed = json.loads(JSONFormatter().format(record))
    assert parsed["context"] == {"session_id": "s-1", "workouts": 12}


def test_json_formatter_reports_engine_error_code():
    try:
        raise SessionNotFound("No session ghost")
    except SessionNotFound:
        import sys

        exc_info = sys.exc_info()
    parsed = json.loads(JSONFormatter().format(_record("lookup failed", (), exc_info)))
    assert parsed["exception"] == {
        "type": "SessionNotFound",
        "message": "No session ghost",
        "code": "SESSION_NOT_FOUND",
        "status_code": 404,
    }


def test_request_id_filter_tags_records():
    token = set_request_id("req-42")
    try:
        record = _record()
        assert RequestIdFilter().filter(record) is True
        assert record.ctx_request_id == "req-42"
    finally:
        reset_request_id(token)


def test_request_id_filter_without_request():
    record = _record()
    RequestIdFilter().filter(record)
    assert not hasattr(record, "ctx_request_id")


def test_get_logger_returns_named_logger():
    log = get_logger("ruckplan.services.scheduler")
    assert log.name == "ruckplan.services.scheduler"
    assert isinstance(log, logging.Logger)


def test_setup_logging_idempotent():
    root = logging.getLogger()
    initial_count = len(root.handlers)
    setup_logging()
    setup_logging()
    assert len(root.handlers) <= initial_count + 1
