"""Persistence layer — event log and state document."""

from deflation.persistence.event_log import EventKind, EventLog, EventRecord
from deflation.persistence.state_store import StateStore

__all__ = [
    "EventKind",
    "EventLog",
    "EventRecord",
    "StateStore",
]
