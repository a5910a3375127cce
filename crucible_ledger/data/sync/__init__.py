"""Module de synchronisation API Bungie → DuckDB.

Architecture:
- api_client.py : Client aiohttp (ActivityApi)
- transformers.py : PGCR → lignes DuckDB
- engine.py : Orchestrateur ActivitySyncEngine
- models.py : Modèles (SyncOptions, SyncResult, réponses API)

Usage:
    from crucible_ledger.data.sync import ActivitySyncEngine, SyncOptions

    engine = ActivitySyncEngine(store, client, manifest=manifest)
    result = await engine.sync_player(member_id, platform)
    print(result.to_message())
"""

from crucible_ledger.data.sync.api_client import ActivityApi, BungieAPIClient
from crucible_ledger.data.sync.engine import ActivitySyncEngine
from crucible_ledger.data.sync.models import (
    ActivityHistoryEntry,
    ActivityPage,
    CarnageReport,
    CurrentActivity,
    ManifestVersion,
    PlayerProfile,
    ReferenceMiss,
    SyncOptions,
    SyncResult,
)
from crucible_ledger.data.sync.transformers import transform_report

__all__ = [
    "ActivityApi",
    "ActivityHistoryEntry",
    "ActivityPage",
    "ActivitySyncEngine",
    "BungieAPIClient",
    "CarnageReport",
    "CurrentActivity",
    "ManifestVersion",
    "PlayerProfile",
    "ReferenceMiss",
    "SyncOptions",
    "SyncResult",
    "transform_report",
]
