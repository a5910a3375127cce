"""Calcul des statistiques agrégées sur un ensemble de performances."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict

import polars as pl

from crucible_ledger.data.domain.models import AggregateStats, PlayerActivityPerformance
from crucible_ledger.data.domain.refdata import Standing

_SUM_COLUMNS = (
    "kills",
    "deaths",
    "assists",
    "opponents_defeated",
    "precision_kills",
    "ability_kills",
    "grenade_kills",
    "melee_kills",
    "super_kills",
    "time_played_seconds",
    "all_medals_earned",
)


def performances_to_polars(rows: Iterable[PlayerActivityPerformance]) -> pl.DataFrame:
    """Convertit des performances en DataFrame Polars (une ligne par performance)."""
    records = [asdict(r) for r in rows]
    if not records:
        return pl.DataFrame()
    return pl.DataFrame(records)


def aggregate_performances(rows: Iterable[PlayerActivityPerformance]) -> AggregateStats:
    """Agrège les performances d'un joueur.

    Les égalités sont enregistrées comme victoires et comptent donc dans
    `wins`.

    Args:
        rows: Performances (une par activité et personnage).

    Returns:
        AggregateStats contenant les totaux.
    """
    df = performances_to_polars(rows)
    if df.is_empty():
        return AggregateStats()

    totals = df.select(
        [pl.col(c).cast(pl.Int64).sum().alias(c) for c in _SUM_COLUMNS]
        + [
            pl.len().alias("activities"),
            (pl.col("standing") == int(Standing.VICTORY)).sum().alias("wins"),
            (pl.col("standing") == int(Standing.DEFEAT)).sum().alias("losses"),
            pl.col("completed").cast(pl.Int64).sum().alias("completed"),
            pl.col("kills").max().alias("highest_kills"),
        ]
    ).row(0, named=True)

    activities = int(totals["activities"])
    wins = int(totals["wins"] or 0)
    losses = int(totals["losses"] or 0)
    return AggregateStats(
        activities=activities,
        wins=wins,
        losses=losses,
        unknown=activities - wins - losses,
        completed=int(totals["completed"] or 0),
        highest_kills=int(totals["highest_kills"] or 0),
        **{c: int(totals[c] or 0) for c in _SUM_COLUMNS},
    )
