"""Append-only JSON-lines audit trail for raw notifications and detail records."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def _json_default(value: object) -> object:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class AuditLog:
    """Writes one JSON object per line; nothing here is ever read back."""

    def __init__(self, transactions_path: Path, detailed_info_path: Path) -> None:
        self._transactions_path = Path(transactions_path)
        self._detailed_info_path = Path(detailed_info_path)
        self._lines_written = 0

    @property
    def lines_written(self) -> int:
        return self._lines_written

    def write_notification(self, payload: Any) -> None:
        """Record a raw notification as received."""
        self._append(self._transactions_path, payload)

    def write_detail(self, record: dict[str, Any]) -> None:
        """Record a transaction detail record."""
        self._append(self._detailed_info_path, record)

    def _append(self, path: Path, payload: Any) -> None:
        entry = {"received_at": datetime.now(UTC).isoformat(), "data": payload}
        try:
            line = json.dumps(entry, default=_json_default)
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
            self._lines_written += 1
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Audit write to %s failed: %s", path, e)
