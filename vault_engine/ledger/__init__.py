"""In-memory reference collaborators: ledger, clocks and keyed store."""
from .memory import InMemoryLedger, ManualClock, SystemClock
from .store import SCHEMA_VERSION, InMemoryStore, migrate_record

__all__ = [
    "InMemoryLedger",
    "InMemoryStore",
    "ManualClock",
    "SCHEMA_VERSION",
    "SystemClock",
    "migrate_record",
]
