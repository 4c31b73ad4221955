"""Structured logging for Chat Archive jobs and services."""

from __future__ import annotations

import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

import orjson

_DEFAULT_LEVEL = os.environ.get("CHARC_LOG_LEVEL", "INFO")
_DEFAULT_FORMAT = os.environ.get("CHARC_LOG_FORMAT", "json")

# HTTP client chatter drowns out job progress at INFO.
_NOISY_LOGGERS = ("urllib3", "httpx", "httpcore")

_JOB_FIELDS: ContextVar[dict[str, Any]] = ContextVar("chat_archive_job_fields", default={})


class JsonFormatter(logging.Formatter):
    """One JSON object per record: base fields, the running job, then ``ctx_`` extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        payload.update(_JOB_FIELDS.get())
        for key, value in record.__dict__.items():
            if key.startswith("ctx_"):
                payload[key[4:]] = value
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["error"] = type(exc).__name__
            kind = getattr(exc, "kind", None)
            if kind:
                payload["error_kind"] = kind
            payload["traceback"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(level: str | int = _DEFAULT_LEVEL, use_json: bool | None = None) -> None:
    """Install a single stderr handler on the root logger.

    ``use_json`` defaults to ``CHARC_LOG_FORMAT`` (``json`` or ``text``).
    """
    if use_json is None:
        use_json = _DEFAULT_FORMAT.lower() != "text"
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stderr)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = "chat_archive") -> logging.Logger:
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


def log_context(**fields: Any) -> dict[str, Any]:
    """Build an ``extra`` mapping whose keys the JSON formatter emits."""
    return {f"ctx_{key}": value for key, value in fields.items()}


def bind_job(**fields: Any) -> dict[str, Any]:
    """Attach ``fields`` to every record logged until :func:`restore_job`; returns the previous binding."""
    previous = _JOB_FIELDS.get()
    _JOB_FIELDS.set({**previous, **{key: value for key, value in fields.items() if value is not None}})
    return previous


def restore_job(previous: dict[str, Any]) -> None:
    _JOB_FIELDS.set(previous)


def job_fields() -> dict[str, Any]:
    return dict(_JOB_FIELDS.get())


__all__ = ["configure_logging", "get_logger", "log_context", "bind_job", "restore_job", "job_fields"]
