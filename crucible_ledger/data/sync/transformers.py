"""Transformateurs PGCR → lignes DuckDB.

Architecture:
- transform_report() : CarnageReport → ActivityRows (+ références non résolues)
- player_standing() : standing brut → Standing (victoire / défaite / inconnu)

Les hashes (carte, armes) et les médailles sont résolus via le manifest
local. Une référence absente ne bloque jamais l'écriture : le nom est laissé
à NULL et une ReferenceMiss est renvoyée.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from crucible_ledger.data.domain.refdata import (
    FREE_FOR_ALL_MODES,
    NO_TEAMS_INDEX,
    CharacterClass,
    Mode,
    Standing,
    standing_from_value,
)
from crucible_ledger.data.manifest.store import MEDAL_REFERENCE, ReferenceKind
from crucible_ledger.data.sync.models import (
    ActivityPlayerRow,
    ActivityRow,
    ActivityRows,
    CarnageReport,
    MedalStatRow,
    PlayerEntry,
    ReferenceMiss,
    TeamResultRow,
    WeaponStatRow,
)

if TYPE_CHECKING:
    from crucible_ledger.data.manifest.store import ManifestStore

logger = logging.getLogger(__name__)


def is_free_for_all(report: CarnageReport) -> bool:
    """Activité sans équipes (Rumble, Scorched, ...)."""
    if any(Mode.from_value(m) in FREE_FOR_ALL_MODES for m in report.all_modes):
        return True
    return not report.teams and all(e.team == NO_TEAMS_INDEX for e in report.entries)


def player_standing(entry: PlayerEntry, *, free_for_all: bool) -> Standing:
    """Standing d'un joueur (égalité = victoire)."""
    return standing_from_value(entry.standing, free_for_all=free_for_all)


def transform_report(
    report: CarnageReport,
    manifest: ManifestStore | None = None,
) -> tuple[ActivityRows, list[ReferenceMiss]]:
    """Convertit un PGCR en lignes prêtes pour l'écriture atomique.

    Args:
        report: PGCR validé.
        manifest: Manifest local (None = aucune résolution).

    Returns:
        (lignes, références non résolues)
    """
    misses: list[ReferenceMiss] = []
    activity_id = report.activity_id

    def _resolve(hash_value: int, kind: ReferenceKind) -> tuple[str | None, str | None]:
        if manifest is None or not hash_value:
            return None, None
        entry = manifest.resolve(hash_value, kind)
        if entry is None:
            misses.append(ReferenceMiss(kind=kind.value, hash=hash_value, activity_id=activity_id))
            logger.debug(f"Référence {kind.value} {hash_value} absente du manifest ({activity_id})")
            return None, None
        return entry.name, entry.type_name

    def _resolve_medal(stat_id: str) -> str | None:
        if manifest is None:
            return None
        medal = manifest.resolve_medal(stat_id)
        if medal is None:
            misses.append(ReferenceMiss(kind=MEDAL_REFERENCE, hash=stat_id, activity_id=activity_id))
            logger.debug(f"Médaille {stat_id} absente du manifest ({activity_id})")
            return None
        return medal.name

    map_name, _ = _resolve(report.reference_hash, ReferenceKind.ACTIVITY)

    activity = ActivityRow(
        activity_id=activity_id,
        period=report.period,
        mode=report.mode,
        platform=report.platform,
        reference_hash=report.reference_hash,
        director_activity_hash=report.director_activity_hash,
        is_private=report.is_private,
        map_name=map_name,
        roster_size=len(report.entries),
    )

    teams = [
        TeamResultRow(
            activity_id=activity_id,
            team_id=t.team_id,
            score=t.score,
            standing=int(standing_from_value(t.standing)),
        )
        for t in report.teams
    ]

    free_for_all = is_free_for_all(report)
    players: list[ActivityPlayerRow] = []
    weapons: list[WeaponStatRow] = []
    medals: list[MedalStatRow] = []
    for e in report.entries:
        players.append(
            ActivityPlayerRow(
                activity_id=activity_id,
                member_id=e.member_id,
                character_id=e.character_id,
                platform=e.platform,
                display_name=e.display_name,
                class_id=int(CharacterClass.from_hash(e.class_hash)),
                light_level=e.light_level,
                team=e.team,
                standing=int(player_standing(e, free_for_all=free_for_all)),
                completion_reason=e.completion_reason,
                completed=e.completed,
                kills=e.kills,
                deaths=e.deaths,
                assists=e.assists,
                score=e.score,
                opponents_defeated=e.opponents_defeated,
                precision_kills=e.precision_kills,
                ability_kills=e.ability_kills,
                grenade_kills=e.grenade_kills,
                melee_kills=e.melee_kills,
                super_kills=e.super_kills,
                time_played_seconds=e.time_played_seconds,
                activity_duration_seconds=e.activity_duration_seconds,
                start_seconds=e.start_seconds,
                player_count=e.player_count,
                team_score=e.team_score,
                all_medals_earned=e.all_medals_earned,
            )
        )
        for w in e.weapons:
            weapon_name, weapon_type = _resolve(w.weapon_hash, ReferenceKind.ITEM)
            weapons.append(
                WeaponStatRow(
                    activity_id=activity_id,
                    member_id=e.member_id,
                    character_id=e.character_id,
                    weapon_hash=w.weapon_hash,
                    kills=w.kills,
                    precision_kills=w.precision_kills,
                    weapon_name=weapon_name,
                    weapon_type=weapon_type,
                )
            )
        for medal_id, count in sorted(e.medals.items()):
            medals.append(
                MedalStatRow(
                    activity_id=activity_id,
                    member_id=e.member_id,
                    character_id=e.character_id,
                    medal_id=medal_id,
                    count=count,
                    medal_name=_resolve_medal(medal_id),
                )
            )

    rows = ActivityRows(
        activity=activity,
        modes=report.all_modes,
        teams=teams,
        players=players,
        weapons=weapons,
        medals=medals,
    )
    return rows, misses
