"""
Unit tests for the recovery ledger.

Tests cover:
- In-memory ring buffer capacity and ordering
- Durable log format and history reconstruction
- Immutability of recorded actions
- Tolerance of durable log I/O failures
"""

import dataclasses
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from recovery.ledger import RecoveryLedger, format_line, load_history, parse_line
from recovery.types import ActionKind, RecoveryActionRecord


def _entry(**overrides) -> RecoveryActionRecord:
    data = {
        "id": "0b1c2d3e-0000-4000-8000-000000000001",
        "timestamp": datetime(2026, 10, 18, 9, 0, 0, 123456, tzinfo=timezone.utc),
        "service": "session-system",
        "action": ActionKind.RESTART,
        "success": False,
        "duration_ms": 1503,
        "details": "Service restart failed",
        "error": "boom",
    }
    data.update(overrides)
    return RecoveryActionRecord(**data)


class TestLogFormat:
    """Test the durable log line format."""

    def test_format_line(self):
        line = format_line(_entry())

        assert line == (
            "[2026-10-18T09:00:00.123456+00:00] session-system:restart FAILED (1503ms) "
            "id=0b1c2d3e-0000-4000-8000-000000000001 - Service restart failed | Error: boom"
        )

    def test_format_line_without_error(self):
        line = format_line(_entry(success=True, error=None, details="Service restarted successfully"))

        assert " SUCCESS " in line
        assert "Error:" not in line

    def test_newlines_are_collapsed(self):
        line = format_line(_entry(details="line one\nline two", error="trace\nmore"))

        assert "\n" not in line

    def test_parse_line_reverses_format(self):
        entry = _entry()
        parsed = parse_line(format_line(entry))

        assert parsed == entry

    def test_parse_line_with_colon_in_service_name(self):
        entry = _entry(service="node:worker", error=None, success=True)

        assert parse_line(format_line(entry)) == entry

    def test_parse_line_rejects_garbage(self):
        assert parse_line("not a ledger line") is None
        assert parse_line("[not-a-date] svc:restart SUCCESS (1ms) id=x - d") is None


class TestRecoveryLedger:
    """Test RecoveryLedger functionality."""

    def test_record_creates_immutable_entry(self, tmp_path):
        ledger = RecoveryLedger(tmp_path / "recovery.log")
        entry = ledger.record("alpha", ActionKind.RESTART, True, 12, "Service restarted successfully")

        assert entry.id
        assert entry.timestamp.tzinfo is not None
        with pytest.raises(dataclasses.FrozenInstanceError):
            entry.success = False

    def test_capacity_evicts_oldest(self):
        ledger = RecoveryLedger(capacity=3)
        for i in range(5):
            ledger.record(f"svc-{i}", ActionKind.RESTART, True, i, "ok")

        assert len(ledger) == 3
        assert [e.service for e in ledger.entries()] == ["svc-2", "svc-3", "svc-4"]
        assert ledger.total_appended == 5

    def test_recent(self):
        ledger = RecoveryLedger()
        for i in range(4):
            ledger.record(f"svc-{i}", ActionKind.CLEANUP, True, 0, "ok")

        assert [e.service for e in ledger.recent(2)] == ["svc-2", "svc-3"]
        assert ledger.recent(0) == []

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            RecoveryLedger(capacity=0)

    def test_timestamps_never_go_backwards(self):
        """Test a clock step backwards is clamped."""
        ledger = RecoveryLedger()
        first_time = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        with patch("recovery.ledger.utc_now", return_value=first_time):
            first = ledger.record("alpha", ActionKind.RESTART, True, 0, "ok")
        with patch("recovery.ledger.utc_now", return_value=first_time - timedelta(seconds=30)):
            second = ledger.record("alpha", ActionKind.RESTART, True, 0, "ok")

        assert second.timestamp >= first.timestamp

    def test_append_rejects_out_of_order(self):
        ledger = RecoveryLedger()
        ledger.append(_entry())

        with pytest.raises(ValueError):
            ledger.append(_entry(id="older", timestamp=_entry().timestamp - timedelta(seconds=1)))

    def test_durable_log_written_per_append(self, tmp_path):
        path = tmp_path / "nested" / "recovery.log"
        ledger = RecoveryLedger(path)
        ledger.record("alpha", ActionKind.RESTART, True, 5, "Service restarted successfully")
        ledger.record("alpha", ActionKind.ESCALATE, True, 0, "Recovery escalated - entering recovery mode")

        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert "alpha:escalate SUCCESS" in lines[1]

    def test_durable_log_not_truncated_by_capacity(self, tmp_path):
        path = tmp_path / "recovery.log"
        ledger = RecoveryLedger(path, capacity=2)
        for i in range(5):
            ledger.record("alpha", ActionKind.RESTART, False, i, "Service restart failed", error="x")

        assert len(path.read_text(encoding="utf-8").splitlines()) == 5
        assert len(ledger) == 2

    def test_history_rebuilt_from_log_alone(self, tmp_path):
        path = tmp_path / "recovery.log"
        ledger = RecoveryLedger(path)
        recorded = [
            ledger.record("alpha", ActionKind.RESTART, False, 10, "Service restart failed", error="exit 1"),
            ledger.record("alpha", ActionKind.REPAIR, True, 20, "Service repair completed"),
        ]

        assert load_history(path) == recorded
        assert RecoveryLedger(path, preload=True).entries() == recorded

    def test_load_history_skips_malformed_lines(self, tmp_path):
        path = tmp_path / "recovery.log"
        path.write_text(format_line(_entry()) + "\ngarbage\n\n", encoding="utf-8")

        history = load_history(path)

        assert len(history) == 1
        assert load_history(tmp_path / "missing.log") == []

    def test_load_history_limit(self, tmp_path):
        path = tmp_path / "recovery.log"
        ledger = RecoveryLedger(path)
        for i in range(5):
            ledger.record(f"svc-{i}", ActionKind.RESTART, True, 0, "ok")

        assert [e.service for e in load_history(path, limit=2)] == ["svc-3", "svc-4"]

    def test_write_failure_does_not_raise(self, tmp_path):
        """Test the in-memory tier still records when the durable write fails."""
        ledger = RecoveryLedger(tmp_path / "recovery.log")

        with patch("builtins.open", side_effect=OSError("disk full")):
            entry = ledger.record("alpha", ActionKind.RESTART, True, 0, "ok")

        assert ledger.entries() == [entry]
