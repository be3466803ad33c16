"""Tests for the append-only event log — proves tampering is detected on load."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from tracechain.persistence.event_log import EventKind, EventLog, EventRecord


def _now() -> datetime:
    return datetime(2026, 2, 16, 12, 0, 0, tzinfo=timezone.utc)


def _event(n: int, actor: str = "acme") -> EventRecord:
    return EventRecord.create(
        f"evt_{n:08d}", EventKind.PRODUCT_REGISTERED, actor,
        {"product_id": n, "batch_number": f"B-{n}", "component": "products"}, _now(),
    )


class TestEventLog:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_event(1))
        log.append(EventRecord.create(
            "evt_00000002", EventKind.PRODUCT_UPDATED, "acme", {"product_id": 1}, _now(),
        ))
        assert log.count == 2
        assert [e.event_id for e in log.events(EventKind.PRODUCT_REGISTERED)] == ["evt_00000001"]
        assert log.count_by_kind() == {"product_registered": 1, "product_updated": 1}

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        log.append(_event(1))
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(_event(1, actor="other"))

    def test_hash_is_deterministic(self) -> None:
        assert _event(1).event_hash == _event(1).event_hash
        assert _event(1).event_hash.startswith("sha256:")
        assert _event(1).event_hash != _event(1, actor="other").event_hash


class TestPersistence:
    def test_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(path)
        for n in (1, 2, 3):
            log.append(_event(n))
        reloaded = EventLog(path)
        assert reloaded.events() == log.events()

    def test_tampered_payload_fails_closed(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(path)
        log.append(_event(1))
        record = json.loads(path.read_text(encoding="utf-8"))
        record["payload"]["batch_number"] = "B-999"
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(path)

    def test_replayed_line_fails_closed(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(path).append(_event(1))
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")
        with pytest.raises(ValueError, match="Duplicate event ID on recovery"):
            EventLog(path)
