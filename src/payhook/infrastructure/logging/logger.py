# src/payhook/infrastructure/logging/logger.py
# Copyright (c) Payhook.
# SPDX-License-Identifier: MIT
"""Structured JSON logging.

Purpose:
    One JSON object per log line, with stable keys, so worker and API logs
    can be queried by event name (``webhook.dispatch.failed``) and fields.

Layer:
    infrastructure/logging

Notes:
    * Keys: ``ts``, ``level``, ``logger``, ``message`` plus optional
      ``service``, ``request_id``, ``exc_type`` and ``exc_message``.
    * Structured fields travel in ``extra={"extra": {...}}`` and are merged
      into the top-level object.
    * Values that are not JSON-native (UUIDs, datetimes, enums) are rendered
      with ``str``.

Typical usage:
    configure_root_logging()
    log = get_json_logger(__name__)
    log.info("webhook.ingest.accepted", extra={"extra": {"event_id": str(event_id)}})
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any

__all__ = ["configure_root_logging", "get_json_logger"]

_REQUEST_ID_ENV_KEY = "REQUEST_ID"
_SERVICE_ENV_KEY = "SERVICE_NAME"

# Keys owned by the formatter; extras may not overwrite them.
_RESERVED_KEYS = frozenset({"ts", "level", "logger", "message"})


class _JsonFormatter(logging.Formatter):
    """JSON log formatter emitting stable keys and merged extras."""

    def __init__(self, *, service: str | None = None) -> None:
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a compact JSON object.

        Args:
            record: Logging record.

        Returns:
            str: JSON-encoded log line.
        """
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        service = self._service or os.getenv(_SERVICE_ENV_KEY)
        if service:
            payload["service"] = service

        request_id = getattr(record, "request_id", None) or os.getenv(_REQUEST_ID_ENV_KEY)
        if request_id:
            payload["request_id"] = request_id

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            if exc_type is not None:
                payload["exc_type"] = exc_type.__name__
            if exc_value is not None:
                payload["exc_message"] = str(exc_value)

        extra = getattr(record, "extra", None)
        if isinstance(extra, dict):
            for key, value in extra.items():
                if key not in _RESERVED_KEYS:
                    payload[key] = value

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def configure_root_logging(level: str | int | None = None, *, service: str | None = None) -> None:
    """Install the JSON handler on the root logger (idempotent).

    Args:
        level: Logging level or level name. If ``None``, use env ``LOG_LEVEL``
            or ``INFO``.
        service: Optional service name stamped on every line.
    """
    root = logging.getLogger()

    env_level = os.getenv("LOG_LEVEL")
    resolved: int | str = (
        level if level is not None else (env_level.upper() if env_level else "INFO")
    )
    if isinstance(resolved, str):
        resolved = resolved.upper()
    root.setLevel(resolved)

    if any(isinstance(h.formatter, _JsonFormatter) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(_JsonFormatter(service=service))
    root.addHandler(handler)


def get_json_logger(name: str) -> logging.Logger:
    """Return a module logger that propagates to the JSON root handler.

    Call :func:`configure_root_logging` once at startup; this function does
    not configure handlers.

    Args:
        name: Logger name, typically ``__name__``.

    Returns:
        logging.Logger: The named logger.
    """
    logger = logging.getLogger(name)
    logger.propagate = True
    return logger
