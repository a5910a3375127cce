"""Modèles dataclass pour les agrégats de stats."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class AggregateStats:
    """Statistiques agrégées sur un ensemble d'activités."""

    activities: int = 0
    wins: int = 0
    losses: int = 0
    unknown: int = 0
    completed: int = 0
    kills: int = 0
    deaths: int = 0
    assists: int = 0
    opponents_defeated: int = 0
    highest_kills: int = 0
    precision_kills: int = 0
    ability_kills: int = 0
    grenade_kills: int = 0
    melee_kills: int = 0
    super_kills: int = 0
    time_played_seconds: int = 0
    all_medals_earned: int = 0

    def to_dict(self) -> dict[str, int | float | None]:
        """Expose une représentation dict (CLI / JSON)."""
        return {
            "activities": self.activities,
            "wins": self.wins,
            "losses": self.losses,
            "unknown": self.unknown,
            "win_rate": self.win_rate,
            "kills": self.kills,
            "deaths": self.deaths,
            "assists": self.assists,
            "kd": self.kills_deaths_ratio,
            "efficiency": self.efficiency,
            "kda": self.kills_deaths_assists,
            "kills_per_game": self.kills_per_game,
            "highest_kills": self.highest_kills,
            "precision_kills": self.precision_kills,
            "time_played_seconds": self.time_played_seconds,
            "medals": self.all_medals_earned,
            "medals_per_game": self.medals_per_game,
        }

    @property
    def win_rate(self) -> float | None:
        """Taux de victoire (0-1), sur les activités de résultat connu."""
        decided = self.wins + self.losses
        if decided <= 0:
            return None
        return self.wins / decided

    @property
    def kills_deaths_ratio(self) -> float | None:
        if self.activities <= 0:
            return None
        if self.deaths <= 0:
            return float(self.kills)
        return self.kills / self.deaths

    @property
    def efficiency(self) -> float | None:
        """(frags + assists) / morts."""
        if self.activities <= 0:
            return None
        if self.deaths <= 0:
            return float(self.kills + self.assists)
        return (self.kills + self.assists) / self.deaths

    @property
    def kills_deaths_assists(self) -> float | None:
        """(frags + assists / 2) / morts."""
        if self.activities <= 0:
            return None
        if self.deaths <= 0:
            return self.kills + self.assists / 2.0
        return (self.kills + self.assists / 2.0) / self.deaths

    @property
    def kills_per_game(self) -> float | None:
        if self.activities <= 0:
            return None
        return self.kills / self.activities

    @property
    def deaths_per_game(self) -> float | None:
        if self.activities <= 0:
            return None
        return self.deaths / self.activities

    @property
    def assists_per_game(self) -> float | None:
        if self.activities <= 0:
            return None
        return self.assists / self.activities

    @property
    def medals_per_game(self) -> float | None:
        if self.activities <= 0:
            return None
        return self.all_medals_earned / self.activities
