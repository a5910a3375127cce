"""Analyse : agrégats de stats et rating Elo (fonctions pures)."""

from crucible_ledger.analysis.rating import RatingConfig, RatingResult, compute_ratings
from crucible_ledger.analysis.stats import aggregate_performances

__all__ = ["RatingConfig", "RatingResult", "aggregate_performances", "compute_ratings"]
