"""Modèles dataclass renvoyés par la couche de requêtes.

Ce module regroupe les structures utilisées par les outils CLI et la
couche d'analyse (PlayerActivityPerformance, TeamSummary, WeaponUsage,
MedalUsage, ActivityDetail).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from crucible_ledger.data.domain.refdata import (
    UNKNOWN_LABEL,
    CharacterClass,
    Mode,
    Standing,
)


@dataclass(frozen=True)
class PlayerActivityPerformance:
    """Une ligne de roster : un joueur / un personnage dans une activité."""

    activity_id: int
    period: datetime
    mode: int
    map_name: str | None
    is_private: bool
    member_id: int
    display_name: str | None
    character_id: int
    class_id: int
    team: int
    standing: int
    completion_reason: int
    completed: bool
    kills: int
    deaths: int
    assists: int
    score: int
    opponents_defeated: int
    precision_kills: int
    ability_kills: int
    grenade_kills: int
    melee_kills: int
    super_kills: int
    time_played_seconds: int
    activity_duration_seconds: int
    player_count: int
    team_score: int
    light_level: int = 0
    all_medals_earned: int = 0

    @property
    def map_label(self) -> str:
        return self.map_name or UNKNOWN_LABEL

    @property
    def name_label(self) -> str:
        return self.display_name or UNKNOWN_LABEL

    @property
    def character_class(self) -> CharacterClass:
        return CharacterClass.from_type(self.class_id)

    @property
    def mode_enum(self) -> Mode:
        return Mode.from_value(self.mode)

    @property
    def is_win(self) -> bool:
        return self.standing == Standing.VICTORY

    @property
    def is_loss(self) -> bool:
        return self.standing == Standing.DEFEAT

    @property
    def efficiency(self) -> float:
        """(frags + assists) / morts (morts = 0 => frags + assists)."""
        if self.deaths <= 0:
            return float(self.kills + self.assists)
        return (self.kills + self.assists) / self.deaths


@dataclass(frozen=True)
class WeaponUsage:
    """Stats d'une arme pour un joueur dans une activité."""

    weapon_hash: int
    weapon_name: str | None
    weapon_type: str | None
    kills: int
    precision_kills: int

    @property
    def name_label(self) -> str:
        return self.weapon_name or UNKNOWN_LABEL

    @property
    def precision_ratio(self) -> float:
        if self.kills <= 0:
            return 0.0
        return self.precision_kills / self.kills


@dataclass(frozen=True)
class MedalUsage:
    """Médaille obtenue par un joueur dans une activité."""

    medal_id: str
    medal_name: str | None
    count: int

    @property
    def name_label(self) -> str:
        return self.medal_name or UNKNOWN_LABEL


@dataclass
class TeamSummary:
    """Une équipe d'une activité et ses joueurs."""

    team_id: int
    score: int | None
    standing: int
    players: list[PlayerActivityPerformance] = field(default_factory=list)


@dataclass
class ActivityDetail:
    """Activité complète : métadonnées, roster groupé par équipe, armes, médailles."""

    activity_id: int
    period: datetime
    mode: int
    modes: list[int]
    platform: int | None
    reference_hash: int | None
    director_activity_hash: int | None
    is_private: bool
    map_name: str | None
    roster_size: int | None
    teams: list[TeamSummary] = field(default_factory=list)
    players: list[PlayerActivityPerformance] = field(default_factory=list)
    weapons: dict[tuple[int, int], list[WeaponUsage]] = field(default_factory=dict)
    medals: dict[tuple[int, int], list[MedalUsage]] = field(default_factory=dict)
    player: PlayerActivityPerformance | None = None

    @property
    def map_label(self) -> str:
        return self.map_name or UNKNOWN_LABEL

    @property
    def mode_enum(self) -> Mode:
        return Mode.from_value(self.mode)

    def weapons_for(self, member_id: int, character_id: int) -> list[WeaponUsage]:
        return self.weapons.get((member_id, character_id), [])

    def medals_for(self, member_id: int, character_id: int) -> list[MedalUsage]:
        return self.medals.get((member_id, character_id), [])
