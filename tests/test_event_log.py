"""Tests for the audit event log — append-only, tamper-evident persistence."""

import json
import pytest
from datetime import datetime, timezone
from pathlib import Path

from marketplace.persistence.event_log import EventKind, EventLog, EventRecord


def _now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _make_event(event_id: str, kind: EventKind = EventKind.PAYMENT_PAID) -> EventRecord:
    return EventRecord.create(
        event_id=event_id,
        event_kind=kind,
        actor_id="bk_1",
        payload={"payment_id": "pay_1", "amount": "1000.00"},
        timestamp_utc=_now(),
    )


class TestEventRecord:
    def test_hash_is_deterministic(self) -> None:
        assert _make_event("EVT-1").event_hash == _make_event("EVT-1").event_hash

    def test_hash_covers_payload(self) -> None:
        a = _make_event("EVT-1")
        b = EventRecord.create(
            event_id="EVT-1",
            event_kind=EventKind.PAYMENT_PAID,
            actor_id="bk_1",
            payload={"payment_id": "pay_1", "amount": "1000.01"},
            timestamp_utc=_now(),
        )
        assert a.event_hash != b.event_hash

    def test_timestamp_format(self) -> None:
        assert _make_event("EVT-1").timestamp_utc == "2026-03-01T12:00:00Z"


class TestEventLog:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_make_event("EVT-1", EventKind.PAYMENT_CREATED))
        log.append(_make_event("EVT-2", EventKind.PAYMENT_PAID))
        assert log.count == 2
        assert len(log.events(EventKind.PAYMENT_PAID)) == 1
        assert log.last_event.event_id == "EVT-2"

    def test_duplicate_rejected(self) -> None:
        log = EventLog()
        log.append(_make_event("EVT-1"))
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(_make_event("EVT-1"))

    def test_events_for_payload_key(self) -> None:
        log = EventLog()
        log.append(_make_event("EVT-1"))
        assert len(log.events_for("payment_id", "pay_1")) == 1
        assert log.events_for("payment_id", "pay_2") == []

    def test_empty_log(self) -> None:
        log = EventLog()
        assert log.count == 0
        assert log.last_event is None


class TestPersistence:
    def test_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_make_event("EVT-1"))
        log.append(_make_event("EVT-2", EventKind.TRANSACTION_RECORDED))

        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.events()[1].event_kind == EventKind.TRANSACTION_RECORDED
        assert reloaded.events()[0].event_hash == log.events()[0].event_hash

    def test_tampered_record_detected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_make_event("EVT-1"))

        record = json.loads(path.read_text(encoding="utf-8"))
        record["payload"]["amount"] = "1.00"
        path.write_text(json.dumps(record) + "\n", encoding="utf-8")

        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)

    def test_duplicate_on_recovery_detected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(storage_path=path).append(_make_event("EVT-1"))
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")

        with pytest.raises(ValueError, match="Duplicate event ID on recovery"):
            EventLog(storage_path=path)


class TestBatchAppend:
    def test_batch_appended_in_order(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append_many([_make_event("EVT-1"), _make_event("EVT-2")])
        assert [e.event_id for e in log.events()] == ["EVT-1", "EVT-2"]
        assert EventLog(storage_path=path).count == 2

    def test_duplicate_in_batch_appends_nothing(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        with pytest.raises(ValueError, match="Duplicate"):
            log.append_many([_make_event("EVT-1"), _make_event("EVT-1")])
        assert log.count == 0
        assert not path.exists()

    def test_batch_with_existing_id_appends_nothing(self) -> None:
        log = EventLog()
        log.append(_make_event("EVT-1"))
        with pytest.raises(ValueError):
            log.append_many([_make_event("EVT-2"), _make_event("EVT-1")])
        assert log.count == 1

    def test_write_failure_leaves_memory_unchanged(self, tmp_path: Path) -> None:
        # A directory in place of the file makes the write fail
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        path.mkdir()
        with pytest.raises(OSError):
            log.append_many([_make_event("EVT-1")])
        assert log.count == 0
