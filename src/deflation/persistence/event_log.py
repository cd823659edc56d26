"""Append-only event log — the notification record of every ledger change.

Each mutating service operation appends one event. Events are immutable
once written and can be persisted to a JSONL file (one JSON object per
line). On load, every record's hash is recomputed and duplicate event
IDs are rejected, so a tampered or replayed file fails closed.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of ledger events."""
    GENESIS_MINT = "genesis_mint"
    TRANSFER = "transfer"
    APPROVAL = "approval"
    BURN = "burn"
    DECAY_SETTLED = "decay_settled"
    # Staking
    STAKE_OPENED = "stake_opened"
    STAKE_EXTENDED = "stake_extended"
    STAKE_UNLOCKED = "stake_unlocked"
    DIVIDENDS_CLAIMED = "dividends_claimed"
    # Recount window
    RECOUNT_INITIATED = "recount_initiated"
    RECOUNT_BATCH = "recount_batch"
    RECOUNT_FINISHED = "recount_finished"
    # Configuration
    POOL_SET = "pool_set"
    EXEMPTION_SET = "exemption_set"
    ROLE_SWITCHED = "role_switched"
    REFERRAL_SET = "referral_set"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor": actor,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable ledger event.

    Amounts in the payload are stored as decimal strings so that values
    beyond 2**53 survive any JSON consumer.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor: str
    payload: dict[str, Any]
    event_hash: str  # SHA-256 of canonical JSON

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor=actor,
            payload=payload,
            event_hash=_canonical_hash(event_id, event_kind.value, ts_str, actor, payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor": self.actor,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional file persistence.

    Usage:
        log = EventLog(Path("data/events.jsonl"))
        log.append(EventRecord.create(log.next_id(), EventKind.BURN, owner, {...}))
        burns = log.events(EventKind.BURN)
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def next_id(self) -> str:
        return f"evt-{len(self._events) + 1:08d}"

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            self._append_to_file(event)

    def record(
        self,
        kind: EventKind,
        actor: str,
        payload: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> EventRecord:
        """Create and append an event with the next sequential ID."""
        event = EventRecord.create(self.next_id(), kind, actor, payload, now)
        self.append(event)
        return event

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: EventRecord) -> None:
        self._storage_path.parent.mkdir(parents=True, exist_ok=True)
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file, failing closed on tampering or replay."""
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]

                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = _canonical_hash(
                    event_id,
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["actor"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor=data["actor"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event.event_id)
