"""Base DuckDB des activités : schéma, écriture atomique, frontier de sync."""

from crucible_ledger.data.store.activity_store import ActivityStore, PendingActivity, WriteOutcome
from crucible_ledger.data.store.frontier import FULL_HISTORY, FrontierMarker, SyncFrontierTracker
from crucible_ledger.data.store.schema import SCHEMA_VERSION

__all__ = [
    "FULL_HISTORY",
    "SCHEMA_VERSION",
    "ActivityStore",
    "FrontierMarker",
    "PendingActivity",
    "SyncFrontierTracker",
    "WriteOutcome",
]
