"""Modèles de domaine (dataclasses) exposés par la couche de requêtes."""

from crucible_ledger.data.domain.models.activity import (
    ActivityDetail,
    MedalUsage,
    PlayerActivityPerformance,
    TeamSummary,
    WeaponUsage,
)
from crucible_ledger.data.domain.models.stats import AggregateStats

__all__ = [
    "ActivityDetail",
    "AggregateStats",
    "MedalUsage",
    "PlayerActivityPerformance",
    "TeamSummary",
    "WeaponUsage",
]
