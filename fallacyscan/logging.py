"""
Structured Logging — JSON lines with request correlation.

Every record emitted under the ``fallacyscan`` logger is rendered as one
JSON object. Context travels two ways:

  - per call, through ``extra={...}`` (only CONTEXT_FIELDS are kept)
  - per request, through bind_request_id(): analyzer, cache and
    streaming records logged while a request is in flight carry its
    request_id without threading it through every signature

Usage:
    from fallacyscan.logging import get_logger
    logger = get_logger("analyzer")
    logger.info("Analysis complete", extra={"fallacies_count": 3})
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional


LOG_LEVEL = os.getenv("FALLACYSCAN_LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("FALLACYSCAN_LOG_FORMAT", "json")  # "json" or "text"

CONTEXT_FIELDS = (
    "request_id", "analysis_id", "fallacies_count", "is_final",
    "cache_key", "client_ip", "remaining", "provider",
    "duration_ms", "status_code", "method", "path", "error", "error_type",
)

_request_id: ContextVar[Optional[str]] = ContextVar("fallacyscan_request_id", default=None)


def bind_request_id(request_id: str):
    """Attach a request id to the current context. Returns a reset token."""
    return _request_id.set(request_id)


def clear_request_id(token=None) -> None:
    if token is not None:
        _request_id.reset(token)
    else:
        _request_id.set(None)


def get_request_id() -> Optional[str]:
    return _request_id.get()


class RequestContextFilter(logging.Filter):
    """Stamps the bound request id onto records that don't carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = _request_id.get()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update({
            key: getattr(record, key)
            for key in CONTEXT_FIELDS
            if getattr(record, key, None) is not None
        })
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Console format for local runs; appends the request id when bound."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        request_id = getattr(record, "request_id", None)
        return f"{line} [{request_id}]" if request_id else line


def setup_logging() -> logging.Logger:
    """Install the package handler. Safe to call more than once."""
    package_logger = logging.getLogger("fallacyscan")
    package_logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if LOG_FORMAT == "json" else TextFormatter())
    handler.addFilter(RequestContextFilter())
    package_logger.handlers[:] = [handler]

    for noisy in ("uvicorn.access", "httpcore", "httpx", "google_genai", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return package_logger


def get_logger(name: str) -> logging.Logger:
    """Child logger under the fallacyscan namespace."""
    return logging.getLogger(f"fallacyscan.{name}")
