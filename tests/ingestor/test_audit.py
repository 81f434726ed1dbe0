"""Tests for the audit log."""

import json
from decimal import Decimal
from pathlib import Path

from handoff_trader.ingestor.audit import AuditLog


class TestAuditLog:
    """Tests for AuditLog."""

    def test_writes_json_lines(self, tmp_path: Path) -> None:
        audit = AuditLog(tmp_path / "transactions.log", tmp_path / "detailed_info.log")

        audit.write_notification({"signature": "a"})
        audit.write_notification({"signature": "b"})
        audit.write_detail({"signature": "a", "type": "SWAP"})

        lines = (tmp_path / "transactions.log").read_text().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["data"] == {"signature": "a"}
        assert "received_at" in first

        detail = json.loads((tmp_path / "detailed_info.log").read_text())
        assert detail["data"]["type"] == "SWAP"
        assert audit.lines_written == 3

    def test_serializes_decimals(self, tmp_path: Path) -> None:
        audit = AuditLog(tmp_path / "t.log", tmp_path / "d.log")

        audit.write_detail({"amount": Decimal("1.5")})

        entry = json.loads((tmp_path / "d.log").read_text())
        assert entry["data"]["amount"] == "1.5"

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        audit = AuditLog(tmp_path / "nested" / "t.log", tmp_path / "nested" / "d.log")

        audit.write_notification(["x"])

        assert (tmp_path / "nested" / "t.log").exists()

    def test_write_failure_is_not_raised(self, tmp_path: Path) -> None:
        # A directory where the file should be makes open() fail
        target = tmp_path / "t.log"
        target.mkdir()
        audit = AuditLog(target, tmp_path / "d.log")

        audit.write_notification({"signature": "a"})

        assert audit.lines_written == 0

    def test_unserializable_payload_is_not_raised(self, tmp_path: Path) -> None:
        audit = AuditLog(tmp_path / "t.log", tmp_path / "d.log")

        audit.write_notification({"obj": object()})

        assert audit.lines_written == 0
