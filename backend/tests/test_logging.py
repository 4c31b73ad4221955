"""Tests for the JSON log formatter and job-scoped log fields."""

from __future__ import annotations

import logging
import sys

import orjson

from chat_archive.core.errors import RateLimitedError
from chat_archive.core.logging import JsonFormatter, job_fields, log_context
from chat_archive.ingest.jobs import JobReporter


def _record(msg: str, exc_info=None, **extra) -> logging.LogRecord:
    record = logging.LogRecord("chat_archive.test", logging.INFO, __file__, 1, msg, None, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_context_fields_are_emitted_without_prefix() -> None:
    record = _record("stored page", **log_context(chat_id=42, batch=3))
    payload = orjson.loads(JsonFormatter().format(record))
    assert payload["msg"] == "stored page"
    assert payload["chat_id"] == 42
    assert payload["batch"] == 3
    assert "ctx_chat_id" not in payload


def test_running_job_is_attached_to_records() -> None:
    before = job_fields()
    reporter = JobReporter("export", chat_id=9, job_id="export-1")
    reporter.start("Exporting chat 9")
    try:
        payload = orjson.loads(JsonFormatter().format(_record("mid-run")))
        assert payload["job_id"] == "export-1"
        assert payload["job_kind"] == "export"
        assert payload["chat_id"] == 9
    finally:
        reporter.finish("success", "done")
    assert job_fields() == before


def test_exception_kind_is_reported() -> None:
    try:
        raise RateLimitedError(5, "slow down")
    except RateLimitedError:
        record = _record("walk stopped", exc_info=sys.exc_info())
    payload = orjson.loads(JsonFormatter().format(record))
    assert payload["error"] == "RateLimitedError"
    assert payload["error_kind"] == "rate_limited"
    assert "slow down" in payload["traceback"]
