"""crmpilot runtime — diagnostics event log and paused-run persistence."""

from crmpilot.runtime.event_log import EventLog, SeqCounter, SQLiteEventLog
from crmpilot.runtime.run_store import InMemoryRunStore, RunStore, SQLiteRunStore

__all__ = [
    "EventLog",
    "InMemoryRunStore",
    "RunStore",
    "SeqCounter",
    "SQLiteEventLog",
    "SQLiteRunStore",
]
