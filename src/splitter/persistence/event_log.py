"""Audit trail of a distributor, kept as a hash chain.

Each successful mutation (share set changes, lock, module registration,
reward credits and withdrawals) and each settlement outcome becomes one
``EventRecord``. Records carry a sequence number and the digest of the
record before them, so removing, reordering or editing any line of a
persisted log breaks the chain and the log refuses to load.

Persisted form is JSONL, one record per line, in sequence order.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4

ROOT_DIGEST = "sha256:" + "0" * 64


class EventKind(str, enum.Enum):
    """What happened to the distributor."""
    DISTRIBUTOR_CREATED = "distributor_created"
    SHARES_UPDATED = "shares_updated"
    LEDGER_LOCKED = "ledger_locked"
    MODULE_REGISTERED = "module_registered"
    MODULE_METADATA_UPDATED = "module_metadata_updated"
    REWARDS_CREDITED = "rewards_credited"
    REWARDS_WITHDRAWN = "rewards_withdrawn"
    SETTLEMENT_CONFIRMED = "settlement_confirmed"
    SETTLEMENT_FAILED = "settlement_failed"


def _digest(body: Dict[str, Any]) -> str:
    encoded = json.dumps(body, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return "sha256:" + hashlib.sha256(encoded).hexdigest()


@dataclass(frozen=True)
class EventRecord:
    """One link of the audit chain.

    ``sequence`` and ``previous_digest`` are assigned by the log on
    append; a record built with ``create`` is unchained until then.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: Dict[str, Any]
    sequence: int = 0
    previous_digest: str = ROOT_DIGEST

    @staticmethod
    def create(
        event_kind: EventKind,
        actor_id: str,
        payload: Dict[str, Any],
        event_id: Optional[str] = None,
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        ts = timestamp_utc or datetime.now(timezone.utc)
        return EventRecord(
            event_id=event_id or f"evt_{uuid4().hex[:16]}",
            event_kind=event_kind,
            timestamp_utc=ts.strftime("%Y-%m-%dT%H:%M:%SZ"),
            actor_id=actor_id,
            payload=payload,
        )

    def body(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "previous_digest": self.previous_digest,
        }

    @property
    def digest(self) -> str:
        return _digest(self.body())

    def to_dict(self) -> Dict[str, Any]:
        data = self.body()
        data["digest"] = self.digest
        return data

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> EventRecord:
        return EventRecord(
            event_id=data["event_id"],
            event_kind=EventKind(data["event_kind"]),
            timestamp_utc=data["timestamp_utc"],
            actor_id=data["actor_id"],
            payload=data["payload"],
            sequence=data["sequence"],
            previous_digest=data["previous_digest"],
        )


class EventLog:
    """Append-only chain of EventRecords, optionally mirrored to JSONL.

    Usage:
        log = EventLog(storage_path=Path("data/events.jsonl"))
        log.append(EventRecord.create(EventKind.LEDGER_LOCKED, "admin", {}))
        log.head   # digest of the newest record
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._records: List[EventRecord] = []
        self._ids: set = set()
        self._storage_path = storage_path
        if storage_path is not None and storage_path.exists():
            self._restore(storage_path)

    def append(self, event: EventRecord) -> EventRecord:
        """Chain ``event`` onto the log and return the chained record.

        Raises ValueError for an event id that is already present.
        """
        if event.event_id in self._ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")
        chained = EventRecord(
            event_id=event.event_id,
            event_kind=event.event_kind,
            timestamp_utc=event.timestamp_utc,
            actor_id=event.actor_id,
            payload=event.payload,
            sequence=len(self._records) + 1,
            previous_digest=self.head,
        )
        # Encoded first: an unencodable payload leaves the log unchanged.
        line = json.dumps(chained.to_dict(), sort_keys=True)
        if self._storage_path is not None:
            with self._storage_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        self._records.append(chained)
        self._ids.add(chained.event_id)
        return chained

    def events(self, kind: Optional[EventKind] = None) -> List[EventRecord]:
        if kind is None:
            return list(self._records)
        return [r for r in self._records if r.event_kind == kind]

    def __iter__(self) -> Iterator[EventRecord]:
        return iter(list(self._records))

    @property
    def count(self) -> int:
        return len(self._records)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._records[-1] if self._records else None

    @property
    def head(self) -> str:
        """Digest the next record will point back to."""
        return self._records[-1].digest if self._records else ROOT_DIGEST

    def _restore(self, path: Path) -> None:
        expected_previous = ROOT_DIGEST
        with path.open("r", encoding="utf-8") as handle:
            for line_num, line in enumerate(handle, 1):
                if not line.strip():
                    continue
                data = json.loads(line)
                record = EventRecord.from_dict(data)
                if record.event_id in self._ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {record.event_id}"
                    )
                if record.sequence != len(self._records) + 1:
                    raise ValueError(
                        f"Sequence gap on recovery (line {line_num}): "
                        f"expected {len(self._records) + 1}, found {record.sequence}"
                    )
                if record.previous_digest != expected_previous:
                    raise ValueError(
                        f"Broken chain on recovery (line {line_num}): "
                        f"event {record.event_id} does not follow its predecessor"
                    )
                if data.get("digest") != record.digest:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): "
                        f"event {record.event_id} was modified"
                    )
                self._records.append(record)
                self._ids.add(record.event_id)
                expected_previous = record.digest
