"""Persistence — append-only audit event log."""

from marketplace.persistence.event_log import EventKind, EventLog, EventRecord

__all__ = ["EventKind", "EventLog", "EventRecord"]
