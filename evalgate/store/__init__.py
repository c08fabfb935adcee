"""Event store package."""

from evalgate.store.event_store import EventStore, fold_events

__all__ = ["EventStore", "fold_events"]
