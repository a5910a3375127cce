"""Modèles de données pour le module de synchronisation.

Contient :
- Options et résultats de synchronisation (SyncOptions, SyncResult)
- Modèles Pydantic des réponses de l'API Bungie (historique, PGCR, profil,
  activité en cours)
- ReferenceMiss : référence manifest non résolue (jamais levée)

Les modèles Pydantic acceptent soit le JSON brut de l'API (clés camelCase,
stats imbriquées {"basic": {"value": ...}}), soit les champs à plat, ce qui
permet de les construire directement dans les tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from crucible_ledger.data.domain.refdata import (
    DEFAULT_SYNC_MODES,
    NO_TEAMS_INDEX,
    Mode,
)

# =============================================================================
# Options et résultats de synchronisation
# =============================================================================


@dataclass
class SyncOptions:
    """Options de synchronisation.

    Attributes:
        modes: Historiques synchronisés (un frontier par mode).
        page_size: Taille d'une page de commit (le frontier avance après chaque page).
        history_page_count: Nombre d'entrées demandées par requête d'historique.
        parallel_details: Nombre de PGCR récupérés en parallèle dans une page.
        with_manifest: Vérifier / mettre à jour le manifest avant la sync.
        retry_pending: Retenter les activités en attente (PGCR introuvables).
        max_history_pages: Limite de pages d'historique (None = jusqu'au frontier).
    """

    modes: tuple[Mode, ...] = DEFAULT_SYNC_MODES
    page_size: int = 20
    history_page_count: int = 250
    parallel_details: int = 4
    with_manifest: bool = True
    retry_pending: bool = True
    max_history_pages: int | None = None


@dataclass
class ReferenceMiss:
    """Hash (ou statId de médaille) absent du manifest local.

    Enregistrement "soft" : compté et loggé, jamais levé.
    """

    kind: str
    hash: int | str
    activity_id: int | None = None


@dataclass
class SyncResult:
    """Résultat d'une synchronisation.

    Contient les compteurs et erreurs pour le rapport final.
    """

    activities_inserted: int = 0
    activities_skipped: int = 0
    participations_repaired: int = 0
    pages_committed: int = 0
    characters_synced: int = 0
    pending_queued: int = 0
    pending_resolved: int = 0
    references_resolved: int = 0
    manifest_updated: bool = False
    reference_misses: list[ReferenceMiss] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    total_available: int = 0
    duration_seconds: float = 0.0
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        """True si aucune erreur fatale n'a interrompu la sync."""
        return len(self.errors) == 0

    def to_message(self) -> str:
        """Message de résumé pour la CLI."""
        if not self.success:
            error_preview = ", ".join(self.errors[:2])
            return f"Sync échouée: {error_preview}"

        parts = []
        if self.activities_inserted > 0:
            parts.append(f"{self.activities_inserted} nouvelles activités")
        if self.participations_repaired > 0:
            parts.append(f"{self.participations_repaired} participations réparées")
        if self.pending_queued > 0:
            parts.append(f"{self.pending_queued} en attente")
        if self.reference_misses:
            parts.append(f"{len(self.reference_misses)} références non résolues")

        if not parts:
            parts.append("Déjà à jour")

        duration_str = ""
        if self.duration_seconds > 0:
            duration_str = f" ({self.duration_seconds:.1f}s)"

        return f"{', '.join(parts)}{duration_str}"

    def to_dict(self) -> dict[str, Any]:
        """Convertit en dict pour sérialisation JSON."""
        return {
            "success": self.success,
            "activities_inserted": self.activities_inserted,
            "activities_skipped": self.activities_skipped,
            "participations_repaired": self.participations_repaired,
            "pages_committed": self.pages_committed,
            "characters_synced": self.characters_synced,
            "pending_queued": self.pending_queued,
            "pending_resolved": self.pending_resolved,
            "references_resolved": self.references_resolved,
            "manifest_updated": self.manifest_updated,
            "reference_misses": len(self.reference_misses),
            "total_available": self.total_available,
            "errors": self.errors,
            "warnings": self.warnings,
            "duration_seconds": self.duration_seconds,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


# =============================================================================
# Helpers de parsing (format des stats Bungie)
# =============================================================================


def stat_value(values: dict[str, Any] | None, name: str, default: float = 0.0) -> float:
    """Extrait values[name]["basic"]["value"] (format DestinyHistoricalStatsValue)."""
    if not values:
        return default
    raw = values.get(name)
    if raw is None:
        return default
    if isinstance(raw, dict):
        basic = raw.get("basic") or {}
        value = basic.get("value")
    else:
        value = raw
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _parse_datetime(v: Any) -> Any:
    if isinstance(v, str):
        v = datetime.fromisoformat(v.replace("Z", "+00:00"))
    if isinstance(v, datetime):
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)
    return v


def _flatten_activity_details(data: dict[str, Any]) -> dict[str, Any]:
    """Aplatit le bloc activityDetails commun à l'historique et au PGCR."""
    details = data.get("activityDetails") or {}
    return {
        "activity_id": details.get("instanceId"),
        "period": data.get("period"),
        "mode": details.get("mode", 0),
        "modes": details.get("modes") or [],
        "reference_hash": details.get("referenceId", 0),
        "director_activity_hash": details.get("directorActivityHash", 0),
        "is_private": details.get("isPrivate", False),
        "platform": details.get("membershipType", 0),
    }


# =============================================================================
# Réponses API : manifest et profil
# =============================================================================


class ManifestVersion(BaseModel):
    """Version du manifest distant."""

    model_config = ConfigDict(extra="ignore")

    version: str = Field(..., min_length=1)
    world_content_path: str | None = None

    @model_validator(mode="before")
    @classmethod
    def from_api(cls, data: Any) -> Any:
        if isinstance(data, dict) and "version" not in data and "Version" in data:
            return {
                "version": data.get("Version") or data.get("version"),
                "world_content_path": (data.get("jsonWorldContentPaths") or {}).get("en"),
            }
        return data


class CharacterInfo(BaseModel):
    """Personnage tel que renvoyé par le composant profil 200."""

    model_config = ConfigDict(extra="ignore")

    character_id: int
    class_type: int = 3
    class_hash: int = 0
    date_last_played: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def from_api(cls, data: Any) -> Any:
        if isinstance(data, dict) and "characterId" in data:
            return {
                "character_id": data.get("characterId"),
                "class_type": data.get("classType", 3),
                "class_hash": data.get("classHash", 0),
                "date_last_played": data.get("dateLastPlayed"),
            }
        return data

    @field_validator("date_last_played", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        return _parse_datetime(v)


class PlayerProfile(BaseModel):
    """Profil joueur : identité (membership primaire) + personnages."""

    model_config = ConfigDict(extra="ignore")

    member_id: int
    platform: int
    display_name: str | None = None
    characters: list[CharacterInfo] = Field(default_factory=list)


# Activité "Orbite" (aucune activité en cours côté jeu)
ORBIT_ACTIVITY_HASH = 82913930


class CurrentActivity(BaseModel):
    """Activité en cours d'un personnage (composant profil 204)."""

    model_config = ConfigDict(extra="ignore")

    character_id: int
    started_at: datetime | None = None
    activity_hash: int = 0
    activity_mode_hash: int = 0
    activity_mode_type: int | None = None
    playlist_activity_hash: int = 0

    @model_validator(mode="before")
    @classmethod
    def from_api(cls, data: Any) -> Any:
        if isinstance(data, dict) and "currentActivityHash" in data:
            return {
                "character_id": data.get("characterId") or data.get("character_id"),
                "started_at": data.get("dateActivityStarted"),
                "activity_hash": data.get("currentActivityHash") or 0,
                "activity_mode_hash": data.get("currentActivityModeHash") or 0,
                "activity_mode_type": data.get("currentActivityModeType"),
                "playlist_activity_hash": data.get("currentPlaylistActivityHash") or 0,
            }
        return data

    @field_validator("started_at", mode="before")
    @classmethod
    def parse_started_at(cls, v: Any) -> Any:
        return _parse_datetime(v)

    @property
    def in_orbit(self) -> bool:
        return self.activity_hash == ORBIT_ACTIVITY_HASH


# =============================================================================
# Réponses API : historique d'activités
# =============================================================================


class ActivityHistoryEntry(BaseModel):
    """Entrée d'historique (résultat léger, sans roster).

    Suffit pour décider si le PGCR doit être récupéré.
    """

    model_config = ConfigDict(extra="ignore")

    activity_id: int
    period: datetime
    mode: int = 0
    modes: list[int] = Field(default_factory=list)
    reference_hash: int = 0
    director_activity_hash: int = 0
    is_private: bool = False
    platform: int = 0

    @model_validator(mode="before")
    @classmethod
    def from_api(cls, data: Any) -> Any:
        if isinstance(data, dict) and "activityDetails" in data:
            return _flatten_activity_details(data)
        return data

    @field_validator("period", mode="before")
    @classmethod
    def parse_period(cls, v: Any) -> Any:
        return _parse_datetime(v)

    @property
    def sort_key(self) -> tuple[datetime, int]:
        return (self.period, self.activity_id)


class ActivityPage(BaseModel):
    """Une page d'historique (ordre : plus récent d'abord)."""

    model_config = ConfigDict(extra="ignore")

    entries: list[ActivityHistoryEntry] = Field(default_factory=list)
    has_more: bool = False


# =============================================================================
# Réponses API : Post Game Carnage Report
# =============================================================================


class WeaponValues(BaseModel):
    """Stats d'une arme pour un joueur dans une activité."""

    model_config = ConfigDict(extra="ignore")

    weapon_hash: int
    kills: int = 0
    precision_kills: int = 0

    @model_validator(mode="before")
    @classmethod
    def from_api(cls, data: Any) -> Any:
        if isinstance(data, dict) and "referenceId" in data:
            values = data.get("values") or {}
            return {
                "weapon_hash": data.get("referenceId"),
                "kills": int(stat_value(values, "uniqueWeaponKills")),
                "precision_kills": int(stat_value(values, "uniqueWeaponPrecisionKills")),
            }
        return data


# Clés de extended.values qui ne sont pas des médailles
_EXTENDED_STAT_KEYS = frozenset(
    {
        "allMedalsEarned",
        "precisionKills",
        "weaponKillsAbility",
        "weaponKillsGrenade",
        "weaponKillsMelee",
        "weaponKillsSuper",
    }
)


def _medal_counts(ext_values: dict[str, Any]) -> dict[str, int]:
    """Médailles obtenues (statId → nombre), compteurs nuls exclus."""
    medals: dict[str, int] = {}
    for stat_id in ext_values:
        if stat_id in _EXTENDED_STAT_KEYS:
            continue
        count = int(stat_value(ext_values, stat_id))
        if count > 0:
            medals[stat_id] = count
    return medals


class PlayerEntry(BaseModel):
    """Ligne de roster du PGCR (un joueur / un personnage)."""

    model_config = ConfigDict(extra="ignore")

    member_id: int
    platform: int = 0
    display_name: str | None = None
    character_id: int
    class_hash: int = 0
    light_level: int = 0
    standing: int | None = None
    team: int = NO_TEAMS_INDEX
    completion_reason: int = 255
    completed: bool = False
    kills: int = 0
    deaths: int = 0
    assists: int = 0
    score: int = 0
    opponents_defeated: int = 0
    precision_kills: int = 0
    ability_kills: int = 0
    grenade_kills: int = 0
    melee_kills: int = 0
    super_kills: int = 0
    time_played_seconds: int = 0
    activity_duration_seconds: int = 0
    start_seconds: int = 0
    player_count: int = 0
    team_score: int = 0
    all_medals_earned: int = 0
    weapons: list[WeaponValues] = Field(default_factory=list)
    medals: dict[str, int] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def from_api(cls, data: Any) -> Any:
        if not (isinstance(data, dict) and "player" in data):
            return data

        player = data.get("player") or {}
        info = player.get("destinyUserInfo") or {}
        values = data.get("values") or {}
        extended = data.get("extended") or {}
        ext_values = extended.get("values") or {}

        display_name = info.get("bungieGlobalDisplayName") or info.get("displayName")
        code = info.get("bungieGlobalDisplayNameCode")
        if display_name and code:
            display_name = f"{display_name}#{int(code):04d}"

        team = values.get("team")
        return {
            "member_id": info.get("membershipId"),
            "platform": info.get("membershipType", 0),
            "display_name": display_name,
            "character_id": data.get("characterId"),
            "class_hash": player.get("classHash", 0),
            "light_level": player.get("lightLevel", 0),
            "standing": data.get("standing", stat_value(values, "standing", -1.0)),
            "team": int(stat_value(values, "team")) if team is not None else NO_TEAMS_INDEX,
            "completion_reason": int(stat_value(values, "completionReason", 255.0)),
            "completed": stat_value(values, "completed") == 1.0,
            "kills": int(stat_value(values, "kills")),
            "deaths": int(stat_value(values, "deaths")),
            "assists": int(stat_value(values, "assists")),
            "score": int(stat_value(values, "score")),
            "opponents_defeated": int(stat_value(values, "opponentsDefeated")),
            "precision_kills": int(stat_value(ext_values, "precisionKills")),
            "ability_kills": int(stat_value(ext_values, "weaponKillsAbility")),
            "grenade_kills": int(stat_value(ext_values, "weaponKillsGrenade")),
            "melee_kills": int(stat_value(ext_values, "weaponKillsMelee")),
            "super_kills": int(stat_value(ext_values, "weaponKillsSuper")),
            "time_played_seconds": int(stat_value(values, "timePlayedSeconds")),
            "activity_duration_seconds": int(stat_value(values, "activityDurationSeconds")),
            "start_seconds": int(stat_value(values, "startSeconds")),
            "player_count": int(stat_value(values, "playerCount")),
            "team_score": int(stat_value(values, "teamScore")),
            "all_medals_earned": int(
                stat_value(ext_values, "allMedalsEarned", stat_value(values, "allMedalsEarned"))
            ),
            "weapons": extended.get("weapons") or [],
            "medals": _medal_counts(ext_values),
        }

    @field_validator("standing", mode="before")
    @classmethod
    def parse_standing(cls, v: Any) -> Any:
        if v is None:
            return None
        value = int(float(v))
        return None if value < 0 else value


class TeamEntry(BaseModel):
    """Résultat d'une équipe."""

    model_config = ConfigDict(extra="ignore")

    team_id: int
    score: int = 0
    standing: int | None = None

    @model_validator(mode="before")
    @classmethod
    def from_api(cls, data: Any) -> Any:
        if isinstance(data, dict) and "teamId" in data:
            return {
                "team_id": data.get("teamId"),
                "score": int(stat_value(data, "score")),
                "standing": int(stat_value(data, "standing", -1.0)),
            }
        return data

    @field_validator("standing", mode="before")
    @classmethod
    def parse_standing(cls, v: Any) -> Any:
        if v is None:
            return None
        value = int(v)
        return None if value < 0 else value


class CarnageReport(BaseModel):
    """PGCR complet : métadonnées d'activité + roster complet + équipes."""

    model_config = ConfigDict(extra="ignore")

    activity_id: int
    period: datetime
    mode: int = 0
    modes: list[int] = Field(default_factory=list)
    reference_hash: int = 0
    director_activity_hash: int = 0
    is_private: bool = False
    platform: int = 0
    entries: list[PlayerEntry] = Field(default_factory=list)
    teams: list[TeamEntry] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def from_api(cls, data: Any) -> Any:
        if isinstance(data, dict) and "activityDetails" in data:
            flat = _flatten_activity_details(data)
            flat["entries"] = data.get("entries") or []
            flat["teams"] = data.get("teams") or []
            return flat
        return data

    @field_validator("period", mode="before")
    @classmethod
    def parse_period(cls, v: Any) -> Any:
        return _parse_datetime(v)

    @property
    def all_modes(self) -> list[int]:
        """Mode principal + modes secondaires, sans doublon."""
        seen: list[int] = []
        for m in [self.mode, *self.modes]:
            if m not in seen:
                seen.append(m)
        return seen


# =============================================================================
# Lignes DuckDB (résultat des transformers)
# =============================================================================


@dataclass
class ActivityRow:
    """Ligne pour la table activity."""

    activity_id: int
    period: datetime
    mode: int
    platform: int
    reference_hash: int
    director_activity_hash: int
    is_private: bool
    map_name: str | None
    roster_size: int


@dataclass
class TeamResultRow:
    """Ligne pour la table team_result."""

    activity_id: int
    team_id: int
    score: int
    standing: int


@dataclass
class ActivityPlayerRow:
    """Ligne pour la table activity_player (un joueur du roster)."""

    activity_id: int
    member_id: int
    character_id: int
    platform: int
    display_name: str | None
    class_id: int
    light_level: int
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
    start_seconds: int
    player_count: int
    team_score: int
    all_medals_earned: int = 0


@dataclass
class WeaponStatRow:
    """Ligne pour la table weapon_stat."""

    activity_id: int
    member_id: int
    character_id: int
    weapon_hash: int
    kills: int
    precision_kills: int
    weapon_name: str | None
    weapon_type: str | None


@dataclass
class MedalStatRow:
    """Ligne pour la table medal_stat."""

    activity_id: int
    member_id: int
    character_id: int
    medal_id: str
    count: int
    medal_name: str | None


@dataclass
class ActivityRows:
    """Unité d'écriture atomique : activité, modes, équipes, roster, armes et médailles."""

    activity: ActivityRow
    modes: list[int] = field(default_factory=list)
    teams: list[TeamResultRow] = field(default_factory=list)
    players: list[ActivityPlayerRow] = field(default_factory=list)
    weapons: list[WeaponStatRow] = field(default_factory=list)
    medals: list[MedalStatRow] = field(default_factory=list)
