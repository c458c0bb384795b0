"""Structured JSON logging helpers for scheduling and sync events."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

MAX_MESSAGE_LENGTH = 200


class JsonFormatter(logging.Formatter):
    """Format log records as JSON with required operation fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "operation": getattr(record, "operation", "unknown"),
            "subject": mask_subject_name(getattr(record, "subject", "")),
            "record_id": getattr(record, "record_id", None),
            "status": getattr(record, "status", record.levelname.lower()),
        }

        error_code = getattr(record, "error_code", None)
        error_message = getattr(record, "error_message", None)
        if error_code is not None:
            payload["error_code"] = error_code
        if error_message is not None:
            payload["error_message"] = scrub(error_message)

        message = record.getMessage()
        if message:
            payload["message"] = scrub(message)

        return json.dumps(payload, ensure_ascii=False)


def mask_subject_name(name: str) -> str:
    """Keep the initial of each name part; single letters are hidden entirely."""
    parts = scrub(name).split()
    return " ".join(part[0] + "*" * (len(part) - 1) if len(part) > 1 else "*" for part in parts)


def scrub(message: str) -> str:
    """Truncate free text so long payloads never reach the log verbatim."""
    if len(message) > MAX_MESSAGE_LENGTH:
        return message[:MAX_MESSAGE_LENGTH] + "…"
    return message


def get_structured_logger(name: str = "clinic_sync") -> logging.Logger:
    """Return a logger configured to emit JSON records."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def log_operation_event(
    logger: logging.Logger,
    *,
    operation: str,
    status: str,
    subject: str = "",
    record_id: str | None = None,
    message: str = "",
    error_code: str | None = None,
    error_message: str | None = None,
) -> None:
    """Emit a structured operation event."""
    extra: dict[str, Any] = {
        "operation": operation,
        "subject": subject,
        "record_id": record_id,
        "status": status,
        "error_code": error_code,
        "error_message": error_message,
    }
    level = logging.WARNING if error_code is not None else logging.INFO
    logger.log(level, message, extra=extra)
