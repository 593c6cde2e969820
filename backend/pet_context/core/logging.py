"""Structured logging for the sync workers and the retrieval fan-out."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import orjson

CONTEXT_PREFIX = "ctx_"


def _default_level() -> str:
    return os.environ.get("PETCTX_LOG_LEVEL", "INFO").upper()


def log_context(**fields: Any) -> dict[str, Any]:
    """Build an ``extra`` mapping whose fields land under ``context`` in JSON output."""
    return {f"{CONTEXT_PREFIX}{key}": value for key, value in fields.items()}


class JsonFormatter(logging.Formatter):
    """One JSON object per line; worker thread names identify sync partitions and retrieval branches."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        context = {
            key[len(CONTEXT_PREFIX) :]: value
            for key, value in record.__dict__.items()
            if key.startswith(CONTEXT_PREFIX)
        }
        if context:
            payload["context"] = context
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(level: str | int | None = None, use_json: bool = True) -> None:
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(level or _default_level())
    handler = logging.StreamHandler(sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"))
    root.handlers = [handler]
    # urllib3 logs every retry and connection at DEBUG; keep source fetches quiet
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str = "pet_context") -> logging.Logger:
    """Return a logger, configuring the root handler on first use."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "configure_logging", "get_logger", "log_context"]
