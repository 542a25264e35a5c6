"""Tests for the event log — append-only, hash-chained audit trail."""

import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from splitter.persistence.event_log import (
    ROOT_DIGEST,
    EventKind,
    EventLog,
    EventRecord,
)


def _event(kind: EventKind = EventKind.SHARES_UPDATED, event_id: str = None) -> EventRecord:
    return EventRecord.create(
        kind,
        "admin",
        {"shares": [{"recipient": "alice", "percentage": "1"}]},
        event_id=event_id,
        timestamp_utc=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


def _persisted(path: Path, count: int) -> list:
    log = EventLog(storage_path=path)
    for n in range(count):
        log.append(_event(event_id=f"evt_{n + 1}"))
    return path.read_text().splitlines()


class TestEventRecord:
    def test_digest_is_deterministic(self) -> None:
        assert _event(event_id="evt_1").digest == _event(event_id="evt_1").digest
        assert _event(event_id="evt_1").digest.startswith("sha256:")

    def test_digest_covers_payload(self) -> None:
        other = EventRecord.create(
            EventKind.SHARES_UPDATED, "admin", {"shares": []},
            event_id="evt_1", timestamp_utc=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )
        assert other.digest != _event(event_id="evt_1").digest

    def test_generated_ids_are_unique(self) -> None:
        assert _event().event_id != _event().event_id

    def test_to_dict(self) -> None:
        data = _event(event_id="evt_1").to_dict()
        assert data["event_kind"] == "shares_updated"
        assert data["timestamp_utc"] == "2026-01-01T00:00:00Z"
        assert data["previous_digest"] == ROOT_DIGEST
        assert EventRecord.from_dict(data) == _event(event_id="evt_1")


class TestEventLog:
    def test_append_chains_records(self) -> None:
        log = EventLog()
        first = log.append(_event(EventKind.DISTRIBUTOR_CREATED))
        second = log.append(_event(EventKind.SHARES_UPDATED))
        assert (first.sequence, second.sequence) == (1, 2)
        assert first.previous_digest == ROOT_DIGEST
        assert second.previous_digest == first.digest
        assert log.head == second.digest

    def test_filter_by_kind(self) -> None:
        log = EventLog()
        log.append(_event(EventKind.DISTRIBUTOR_CREATED))
        log.append(_event(EventKind.LEDGER_LOCKED))
        assert [e.event_kind for e in log.events(EventKind.LEDGER_LOCKED)] == [
            EventKind.LEDGER_LOCKED,
        ]
        assert log.last_event.event_kind == EventKind.LEDGER_LOCKED
        assert [e.sequence for e in log] == [1, 2]

    def test_duplicate_id_rejected(self) -> None:
        log = EventLog()
        log.append(_event(event_id="evt_dup"))
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(_event(event_id="evt_dup"))
        assert log.count == 1

    def test_empty_log(self) -> None:
        log = EventLog()
        assert log.count == 0
        assert log.last_event is None
        assert log.head == ROOT_DIGEST

    def test_unencodable_payload_leaves_log_unchanged(self) -> None:
        log = EventLog()
        with pytest.raises(TypeError):
            log.append(EventRecord.create(EventKind.REWARDS_CREDITED, "x", {"bad": object()}))
        assert log.count == 0


class TestPersistence:
    def test_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(storage_path=path)
        log.append(_event(EventKind.DISTRIBUTOR_CREATED, "evt_1"))
        log.append(_event(EventKind.SHARES_UPDATED, "evt_2"))

        reloaded = EventLog(storage_path=path)
        assert reloaded.events() == log.events()
        assert reloaded.head == log.head

    def test_reloaded_log_keeps_chaining(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        _persisted(path, 1)
        log = EventLog(storage_path=path)
        with pytest.raises(ValueError):
            log.append(_event(event_id="evt_1"))
        log.append(_event(event_id="evt_2"))
        reloaded = EventLog(storage_path=path)
        assert reloaded.count == 2
        assert reloaded.last_event.sequence == 2

    def test_edited_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        (line,) = _persisted(path, 1)
        data = json.loads(line)
        data["payload"]["shares"][0]["percentage"] = "0.5"
        path.write_text(json.dumps(data) + "\n")
        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(storage_path=path)

    def test_removed_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        lines = _persisted(path, 3)
        path.write_text(lines[0] + "\n" + lines[2] + "\n")
        with pytest.raises(ValueError, match="Sequence gap"):
            EventLog(storage_path=path)

    def test_reordered_records_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        lines = _persisted(path, 2)
        first, second = json.loads(lines[0]), json.loads(lines[1])
        first["sequence"], second["sequence"] = 2, 1
        path.write_text(json.dumps(second) + "\n" + json.dumps(first) + "\n")
        with pytest.raises(ValueError, match="Broken chain"):
            EventLog(storage_path=path)

    def test_duplicate_on_disk_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        (line,) = _persisted(path, 1)
        path.write_text(line + "\n" + line + "\n")
        with pytest.raises(ValueError, match="Duplicate event ID on recovery"):
            EventLog(storage_path=path)

    def test_blank_lines_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        (line,) = _persisted(path, 1)
        path.write_text("\n" + line + "\n\n")
        assert EventLog(storage_path=path).count == 1
