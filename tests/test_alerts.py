from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from worklist_monitor.alerts import AlertEmitter, format_message, should_alert
from worklist_monitor.models import AggregatedResult
from worklist_monitor.util.dates import utc_now_iso


NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)


def _result(my_list: int, unviewed: int = 0) -> AggregatedResult:
    return AggregatedResult(worklists={"A##MY LIST": my_list, "UNVIEWED": unviewed}, total=my_list)


def test_alert_gated_on_trigger_worklist_only() -> None:
    assert should_alert(_result(1), "A##MY LIST") is True
    assert should_alert(_result(0, unviewed=7), "A##MY LIST") is False


def test_alert_threshold_is_strict() -> None:
    assert should_alert(_result(1), "A##MY LIST", threshold=1) is False
    assert should_alert(_result(2), "A##MY LIST", threshold=1) is True


@pytest.mark.parametrize("threshold", [0, 1, 3])
def test_alert_decision_is_monotonic(threshold: int) -> None:
    for smaller in range(0, 6):
        if should_alert(_result(smaller), "A##MY LIST", threshold):
            assert should_alert(_result(smaller + 1), "A##MY LIST", threshold)


def test_unknown_trigger_never_alerts() -> None:
    assert should_alert(_result(5), "STAT") is False


def test_utc_now_iso_format() -> None:
    assert utc_now_iso(NOW) == "2026-10-18T12:00:00.000Z"


def test_format_message_lists_worklists_in_order() -> None:
    msg = format_message("Dr. Test", _result(3, unviewed=1))
    lines = msg.splitlines()

    assert lines[0] == "📊 Case Count Report - Dr. Test"
    bullets = [ln for ln in lines if ln.startswith("  • ")]
    assert bullets == ["  • A##MY LIST: 3 cases", "  • UNVIEWED: 1 cases"]
    assert "📈 TOTAL CASES: 3" in lines
    assert lines[-1] == "━" * 30


def test_emit_writes_snapshot_with_expected_keys(tmp_path: Path) -> None:
    path = tmp_path / "alert-status-dr.-test.json"
    AlertEmitter(path).emit(_result(3, unviewed=1), "Dr. Test", has_cases=True, now=NOW)

    data = json.loads(path.read_text(encoding="utf-8"))
    assert set(data) == {"hasCases", "casesFound", "timestamp", "doctorName", "worklists", "formattedMessage"}
    assert data["hasCases"] is True
    assert data["casesFound"] == 3
    assert data["timestamp"] == "2026-10-18T12:00:00.000Z"
    assert data["doctorName"] == "Dr. Test"
    assert data["worklists"] == {"A##MY LIST": 3, "UNVIEWED": 1}
    assert "TOTAL CASES: 3" in data["formattedMessage"]


def test_emit_overwrites_previous_snapshot(tmp_path: Path) -> None:
    path = tmp_path / "alert.json"
    emitter = AlertEmitter(path)
    emitter.emit(_result(3), "Dr. Test", has_cases=True, now=NOW)
    emitter.emit(_result(0), "Dr. Test", has_cases=False, now=NOW)

    snapshot = emitter.load()
    assert snapshot is not None
    assert snapshot.has_cases is False
    assert snapshot.cases_found == 0
    assert not (tmp_path / "alert.json.tmp").exists()


def test_handle_failure_retain_keeps_file(tmp_path: Path) -> None:
    path = tmp_path / "alert.json"
    emitter = AlertEmitter(path)
    emitter.emit(_result(3), "Dr. Test", has_cases=True, now=NOW)
    before = path.read_text(encoding="utf-8")

    emitter.handle_failure("retain")

    assert path.read_text(encoding="utf-8") == before


def test_handle_failure_mark_flags_snapshot_stale(tmp_path: Path) -> None:
    path = tmp_path / "alert.json"
    emitter = AlertEmitter(path)
    emitter.emit(_result(3), "Dr. Test", has_cases=True, now=NOW)

    emitter.handle_failure("mark", now=datetime(2026, 10, 18, 12, 30, tzinfo=timezone.utc))

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["stale"] is True
    assert data["staleSince"] == "2026-10-18T12:30:00.000Z"
    assert data["hasCases"] is True
    assert data["timestamp"] == "2026-10-18T12:00:00.000Z"


def test_handle_failure_mark_keeps_first_failure_time(tmp_path: Path) -> None:
    path = tmp_path / "alert.json"
    emitter = AlertEmitter(path)
    emitter.emit(_result(3), "Dr. Test", has_cases=True, now=NOW)

    emitter.handle_failure("mark", now=datetime(2026, 10, 18, 12, 30, tzinfo=timezone.utc))
    emitter.handle_failure("mark", now=datetime(2026, 10, 18, 13, 0, tzinfo=timezone.utc))

    assert json.loads(path.read_text(encoding="utf-8"))["staleSince"] == "2026-10-18T12:30:00.000Z"


def test_handle_failure_clear_removes_file(tmp_path: Path) -> None:
    path = tmp_path / "alert.json"
    emitter = AlertEmitter(path)
    emitter.emit(_result(3), "Dr. Test", has_cases=True, now=NOW)

    emitter.handle_failure("clear")

    assert not path.exists()


def test_handle_failure_without_file_is_noop(tmp_path: Path) -> None:
    emitter = AlertEmitter(tmp_path / "alert.json")
    emitter.handle_failure("mark")
    emitter.handle_failure("clear")
    assert not (tmp_path / "alert.json").exists()
