"""File fallback transport.

Writes each undelivered message as a JSON file so nothing is lost while the
primary transport is unavailable. The record carries everything needed to
replay the message later.

File format: {timestamp}_{message_id}.json
"""

from __future__ import annotations

from datetime import UTC, datetime
import json
import logging
from pathlib import Path
from typing import Any
import uuid

from .base import BaseTransport, OutboundMessage, TransportResult

logger = logging.getLogger(__name__)


class FileTransport(BaseTransport):
    """Durable local record of intended messages.

    Example:
        transport = FileTransport(Path("/var/spool/notifications"))
        result = await transport.send(message)
        # File created: /var/spool/notifications/20241202_120000_000000_fallback-abc123.json
    """

    def __init__(self, output_dir: Path) -> None:
        """Initialize file transport.

        Args:
            output_dir: Directory receiving one JSON file per message
        """
        self._output_dir = Path(output_dir)
        logger.info("File fallback transport initialized", extra={"output_dir": str(self._output_dir)})

    @property
    def transport_name(self) -> str:
        """Get transport name."""
        return "file"

    @property
    def output_dir(self) -> Path:
        """Directory where records are written."""
        return self._output_dir

    async def _do_send(self, message: OutboundMessage) -> TransportResult:
        """Write message to a JSON file."""
        message_id = f"fallback-{uuid.uuid4()}"
        now = datetime.now(UTC)
        filename = f"{now.strftime('%Y%m%d_%H%M%S_%f')}_{message_id}.json"
        filepath = self._output_dir / filename

        record = {
            "message_id": message_id,
            "timestamp": now.isoformat(),
            "transport": self.transport_name,
            "from": message.from_header,
            "to": message.to,
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
            "priority": message.priority,
            "notification_type": message.notification_type,
            "headers": message.headers,
        }

        try:
            self._output_dir.mkdir(parents=True, exist_ok=True)
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2, default=str)
        except PermissionError as e:
            return TransportResult.failure_result(
                transport=self.transport_name,
                error=f"Permission denied writing to {filepath}: {e}",
                error_code="PERMISSION_DENIED",
            )
        except OSError as e:
            return TransportResult.failure_result(
                transport=self.transport_name,
                error=f"Failed to write message to file: {e}",
                error_code="FILE_WRITE_ERROR",
            )

        return TransportResult.success_result(
            message_id=message_id,
            transport=self.transport_name,
            metadata={"filepath": str(filepath), "filename": filename},
        )

    async def _do_health_check(self) -> bool:
        """Check that the output directory is writable."""
        self._output_dir.mkdir(parents=True, exist_ok=True)
        marker = self._output_dir / ".health_check"
        marker.touch()
        marker.unlink()
        return True

    def list_records(self) -> list[dict[str, Any]]:
        """Load all records in the output directory, oldest first."""
        if not self._output_dir.exists():
            return []
        records = []
        for path in sorted(self._output_dir.glob("*.json")):
            with path.open(encoding="utf-8") as f:
                records.append(json.load(f))
        return records

    def clear_records(self) -> int:
        """Delete all records, returning how many were removed."""
        if not self._output_dir.exists():
            return 0
        removed = 0
        for path in self._output_dir.glob("*.json"):
            path.unlink()
            removed += 1
        return removed


__all__ = ["FileTransport"]
