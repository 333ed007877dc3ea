"""JSON Lines formatter for the structured log stream."""

from __future__ import annotations

from datetime import UTC, datetime
import json
import logging
from typing import Any

# Standard LogRecord attributes; anything else on a record came from ``extra``
# or the context filter and is copied into the payload.
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "taskName"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line with a UTC millisecond timestamp.

    Example output:
        {"timestamp": "2025-01-01T00:00:00.123Z", "level": "INFO", "logger": "DeliveryChannel",
         "message": "Notification delivered", "service": "notification-service",
         "recipient": "a@x.com", "method": "primary"}
    """

    def __init__(self, static: dict[str, Any] | None = None) -> None:
        """``static`` fields are added to every record, e.g. ``{"service": "notification-service"}``."""
        super().__init__()
        self.static = static or {}

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds")
        payload: dict[str, Any] = {
            "timestamp": timestamp.replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **self.static,
        }
        payload.update((key, value) for key, value in vars(record).items() if key not in _RESERVED)

        # Multi-line tracebacks would break JSONL
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info).replace("\n", "\\n")
        if record.stack_info:
            payload["stack_trace"] = record.stack_info.replace("\n", "\\n")

        return json.dumps(payload, ensure_ascii=False, default=str)


__all__ = ["JSONFormatter"]
