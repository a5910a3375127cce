"""Fixtures communes pour les tests.

Ce fichier contient :
- FakeActivityApi : implémentation en mémoire du contrat ActivityApi
- des builders de PGCR / historiques réalistes
- les fixtures DuckDB (base des activités, manifest) sous tmp_path
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from crucible_ledger.config import LedgerConfig
from crucible_ledger.data.domain.refdata import CharacterClass, Mode, Platform
from crucible_ledger.data.manifest.store import ManifestStore
from crucible_ledger.data.store.activity_store import ActivityStore
from crucible_ledger.data.sync.models import (
    ActivityHistoryEntry,
    ActivityPage,
    CarnageReport,
    CharacterInfo,
    CurrentActivity,
    ManifestVersion,
    PlayerEntry,
    PlayerProfile,
    TeamEntry,
    WeaponValues,
)
from crucible_ledger.data.sync.transformers import transform_report
from crucible_ledger.errors import NotFoundError, TransportError

# =============================================================================
# Constantes de test
# =============================================================================

# Membership ids réalistes (19 chiffres)
MEMBER_A = 4611686018467284386
MEMBER_B = 4611686018429999999

CHARACTER_A_HUNTER = 2305843009301111111
CHARACTER_A_TITAN = 2305843009301111112
CHARACTER_B_WARLOCK = 2305843009302222221

HUNTER_HASH = 671679327
TITAN_HASH = 3655393761
WARLOCK_HASH = 2271682572

MAP_HASH = 750001803  # Altar of Flame
UNKNOWN_MAP_HASH = 999999999
WEAPON_GJALLARHORN = 1363886209
WEAPON_IZANAGI = 3211806999
WEAPON_UNKNOWN = 123456789

MEDAL_DOUBLE = "medalMulti2x"
MEDAL_STREAK = "medalStreak5x"
MEDAL_UNKNOWN = "medalSeasonalUnknown"

CONTROL_PLAYLIST_HASH = 3199098680
ALL_MODES_HASH = 1164760504

CLASS_HASH_BY_CHARACTER = {
    CHARACTER_A_HUNTER: HUNTER_HASH,
    CHARACTER_A_TITAN: TITAN_HASH,
    CHARACTER_B_WARLOCK: WARLOCK_HASH,
}

TEAM_ALPHA = 17
TEAM_BRAVO = 18

# Jeudi 2 septembre 2021, 18:00 UTC
BASE_PERIOD = datetime(2021, 9, 2, 18, 0, tzinfo=timezone.utc)

# Samedi 11 septembre 2021, 12:00 UTC (reset hebdo : mardi 7 à 17:00)
NOW = datetime(2021, 9, 11, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Builders
# =============================================================================


def make_player(
    member_id: int,
    character_id: int,
    *,
    team: int = TEAM_ALPHA,
    standing: int | None = 0,
    kills: int = 10,
    deaths: int = 5,
    assists: int = 3,
    class_hash: int = HUNTER_HASH,
    display_name: str | None = None,
    weapons: list[tuple[int, int, int]] | None = None,
    medals: dict[str, int] | None = None,
) -> PlayerEntry:
    """Ligne de roster. weapons = [(hash, frags, frags de précision)], medals = {statId: nombre}."""
    return PlayerEntry(
        member_id=member_id,
        platform=int(Platform.STEAM),
        display_name=display_name or f"Guardian{member_id % 10000}",
        character_id=character_id,
        class_hash=class_hash,
        light_level=1320,
        standing=standing,
        team=team,
        completion_reason=0,
        completed=True,
        kills=kills,
        deaths=deaths,
        assists=assists,
        score=kills * 100,
        opponents_defeated=kills + assists,
        precision_kills=kills // 2,
        time_played_seconds=600,
        activity_duration_seconds=620,
        player_count=12,
        team_score=100,
        all_medals_earned=sum((medals or {}).values()),
        weapons=[
            WeaponValues(weapon_hash=h, kills=k, precision_kills=p) for h, k, p in (weapons or [])
        ],
        medals=dict(medals or {}),
    )


def make_report(
    activity_id: int,
    period: datetime,
    *,
    tracked: list[tuple[int, int]] | None = None,
    roster_size: int = 12,
    mode: Mode = Mode.CONTROL,
    modes: list[int] | None = None,
    is_private: bool = False,
    reference_hash: int = MAP_HASH,
    tracked_standing: int = 0,
    tracked_weapons: list[tuple[int, int, int]] | None = None,
    tracked_medals: dict[str, int] | None = None,
) -> CarnageReport:
    """PGCR 6v6 : les joueurs suivis sont dans l'équipe Alpha, le reste complète le roster."""
    tracked = tracked if tracked is not None else [(MEMBER_A, CHARACTER_A_HUNTER)]
    opposite = 1 - tracked_standing
    entries = [
        make_player(
            member_id,
            character_id,
            team=TEAM_ALPHA,
            standing=tracked_standing,
            class_hash=CLASS_HASH_BY_CHARACTER.get(character_id, HUNTER_HASH),
            weapons=tracked_weapons,
            medals=tracked_medals,
        )
        for member_id, character_id in tracked
    ]
    filler = 0
    while len(entries) < roster_size:
        filler += 1
        team = TEAM_ALPHA if len(entries) % 2 == 0 else TEAM_BRAVO
        entries.append(
            make_player(
                activity_id * 100 + filler,
                activity_id * 1000 + filler,
                team=team,
                standing=tracked_standing if team == TEAM_ALPHA else opposite,
                class_hash=WARLOCK_HASH,
            )
        )

    return CarnageReport(
        activity_id=activity_id,
        period=period,
        mode=int(mode),
        modes=modes if modes is not None else [int(Mode.ALL_PVP), int(mode)],
        reference_hash=reference_hash,
        director_activity_hash=reference_hash,
        is_private=is_private,
        platform=int(Platform.STEAM),
        entries=entries,
        teams=[
            TeamEntry(team_id=TEAM_ALPHA, score=100, standing=tracked_standing),
            TeamEntry(team_id=TEAM_BRAVO, score=80, standing=opposite),
        ],
    )


def write_reports(store: ActivityStore, reports: list[CarnageReport], manifest: Any = None) -> None:
    """Écrit directement des PGCR dans la base (sans moteur de sync)."""
    for report in reports:
        rows, _ = transform_report(report, manifest)
        store.write_activity(rows)


# =============================================================================
# Fake API
# =============================================================================


class FakeActivityApi:
    """Collaborateur API en mémoire.

    - `history` : entrées par personnage, servies du plus récent au plus ancien
    - `fail_after` : nombre de PGCR servis avant une panne réseau (toutes
      les requêtes de détail suivantes lèvent TransportError)
    - `not_found` / `invalid` : activités dont le PGCR est introuvable / invalide
    - `current` : activité en cours par joueur (absent = hors ligne)
    """

    def __init__(self, *, manifest_version: str = "v1", manifest_blob: dict | None = None) -> None:
        self.profiles: dict[int, PlayerProfile] = {}
        self.reports: dict[int, CarnageReport] = {}
        self.history: dict[int, list[ActivityHistoryEntry]] = defaultdict(list)
        self.not_found: set[int] = set()
        self.invalid: set[int] = set()
        self.fail_after: int | None = None
        self.detail_calls: list[int] = []
        self.page_calls: list[tuple[int, Mode, int]] = []
        self.blob_calls = 0
        self.manifest_version = manifest_version
        self.manifest_blob = manifest_blob or {}
        self.current: dict[int, CurrentActivity | None] = {}
        self._served = 0

    # Construction du scénario

    def add_player(
        self,
        member_id: int,
        characters: list[tuple[int, CharacterClass, datetime | None]],
        *,
        display_name: str = "Tracked#0001",
        platform: Platform = Platform.STEAM,
    ) -> None:
        self.profiles[member_id] = PlayerProfile(
            member_id=member_id,
            platform=int(platform),
            display_name=display_name,
            characters=[
                CharacterInfo(character_id=cid, class_type=int(cls), date_last_played=last)
                for cid, cls, last in characters
            ],
        )

    def add_activity(self, report: CarnageReport) -> None:
        """Publie un PGCR et l'ajoute à l'historique de chaque personnage du roster."""
        self.reports[report.activity_id] = report
        entry = ActivityHistoryEntry(
            activity_id=report.activity_id,
            period=report.period,
            mode=report.mode,
            modes=report.all_modes,
            reference_hash=report.reference_hash,
            director_activity_hash=report.director_activity_hash,
            is_private=report.is_private,
            platform=report.platform,
        )
        for player in report.entries:
            self.history[player.character_id].append(entry)

    def add_history_only(self, character_id: int, entry: ActivityHistoryEntry) -> None:
        self.history[character_id].append(entry)

    def reset_calls(self) -> None:
        self.detail_calls.clear()
        self.page_calls.clear()

    # Remplace BungieAPIClient dans `async with`

    async def __aenter__(self) -> FakeActivityApi:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        return None

    # Contrat ActivityApi

    async def fetch_manifest_version(self) -> ManifestVersion:
        return ManifestVersion(version=self.manifest_version, world_content_path="/content.json")

    async def fetch_manifest_blob(self, version: ManifestVersion) -> dict[str, Any]:
        self.blob_calls += 1
        return self.manifest_blob

    async def fetch_player_profile(self, member_id: int, platform: int) -> PlayerProfile:
        if member_id not in self.profiles:
            raise NotFoundError(f"Joueur {member_id} introuvable", status=404)
        return self.profiles[member_id]

    async def fetch_current_activity(self, member_id: int, platform: int) -> CurrentActivity | None:
        return self.current.get(member_id)

    async def fetch_activity_page(
        self,
        member_id: int,
        character_id: int,
        platform: int,
        mode: Mode,
        page: int,
        count: int = 250,
    ) -> ActivityPage:
        self.page_calls.append((character_id, mode, page))
        entries = [e for e in self.history.get(character_id, []) if int(mode) in e.modes]
        entries.sort(key=lambda e: e.sort_key, reverse=True)
        chunk = entries[page * count : (page + 1) * count]
        return ActivityPage(entries=chunk, has_more=(page + 1) * count < len(entries))

    async def fetch_activity_detail(self, activity_id: int) -> CarnageReport:
        self.detail_calls.append(activity_id)
        if self.fail_after is not None and self._served >= self.fail_after:
            raise TransportError("Connexion réinitialisée", status=503)
        if activity_id in self.not_found or activity_id not in self.reports:
            raise NotFoundError(f"PGCR {activity_id} introuvable", status=404, error_code=1653)
        if activity_id in self.invalid:
            return CarnageReport.model_validate({"activity_id": "pas-un-id", "period": None})
        self._served += 1
        return self.reports[activity_id]


def publish_history(
    api: FakeActivityApi,
    count: int,
    *,
    first_id: int = 9_000_000_000,
    start: datetime = BASE_PERIOD,
    step: timedelta = timedelta(minutes=15),
    tracked: list[tuple[int, int]] | None = None,
    roster_size: int = 12,
) -> list[CarnageReport]:
    """Publie `count` activités consécutives (ids et périodes croissants)."""
    reports = []
    for i in range(count):
        report = make_report(
            first_id + i,
            start + i * step,
            tracked=tracked,
            roster_size=roster_size,
            tracked_standing=i % 2,
        )
        api.add_activity(report)
        reports.append(report)
    return reports


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def manifest_blob() -> dict[str, Any]:
    """Contenu monde minimal (armes, cartes, modes, médailles)."""
    return {
        "DestinyInventoryItemDefinition": {
            str(WEAPON_GJALLARHORN): {
                "hash": WEAPON_GJALLARHORN,
                "displayProperties": {"name": "Gjallarhorn", "description": "Wolfpack"},
                "itemTypeDisplayName": "Rocket Launcher",
            },
            str(WEAPON_IZANAGI): {
                "hash": WEAPON_IZANAGI,
                "displayProperties": {"name": "Izanagi's Burden"},
                "itemTypeDisplayName": "Sniper Rifle",
            },
        },
        "DestinyActivityDefinition": {
            str(MAP_HASH): {
                "hash": MAP_HASH,
                "displayProperties": {"name": "Altar of Flame"},
                "pgcrImage": "/img/altar.jpg",
            },
            str(CONTROL_PLAYLIST_HASH): {
                "hash": CONTROL_PLAYLIST_HASH,
                "displayProperties": {"name": "Control"},
            },
        },
        "DestinyActivityModeDefinition": {
            str(ALL_MODES_HASH): {
                "hash": ALL_MODES_HASH,
                "displayProperties": {"name": "All Modes"},
                "modeType": 5,
            },
        },
        "DestinyHistoricalStatsDefinition": {
            MEDAL_DOUBLE: {
                "statId": MEDAL_DOUBLE,
                "statName": "Double Down",
                "statDescription": "Two rapid kills.",
                "iconImage": "/img/medals/double.png",
                "weight": 1,
                "medalTierHash": 3534893398,
            },
            MEDAL_STREAK: {
                "statId": MEDAL_STREAK,
                "statName": "Merciless",
                "statDescription": "Five kills without dying.",
                "iconImage": "/img/medals/streak.png",
                "weight": 10,
                "medalTierHash": 1267542806,
            },
        },
    }


@pytest.fixture
def ledger_config(tmp_path, monkeypatch) -> LedgerConfig:
    for var in (
        "CRUCIBLE_LEDGER_DATA_DIR",
        "CRUCIBLE_LEDGER_API_KEY",
        "BUNGIE_API_KEY",
        "CRUCIBLE_LEDGER_DUCKDB_MEMORY_LIMIT",
        "CRUCIBLE_LEDGER_DUCKDB_THREADS",
        "CRUCIBLE_LEDGER_TIMEOUT",
    ):
        monkeypatch.delenv(var, raising=False)
    return LedgerConfig(data_dir=tmp_path, load_dotenv=False)


@pytest.fixture
def activity_store(ledger_config):
    """Base des activités vide sous tmp_path."""
    store = ActivityStore(ledger_config.activity_db_path, config=ledger_config)
    yield store
    store.close()


@pytest.fixture
def manifest_store(ledger_config, manifest_blob):
    """Manifest v1 installé sous tmp_path."""
    manifest = ManifestStore(ledger_config.manifest_db_path)
    manifest.install("v1", manifest_blob)
    yield manifest
    manifest.close()


@pytest.fixture
def fake_api(manifest_blob) -> FakeActivityApi:
    api = FakeActivityApi(manifest_version="v1", manifest_blob=manifest_blob)
    api.add_player(
        MEMBER_A,
        [
            (CHARACTER_A_HUNTER, CharacterClass.HUNTER, BASE_PERIOD + timedelta(days=5)),
            (CHARACTER_A_TITAN, CharacterClass.TITAN, BASE_PERIOD),
        ],
        display_name="Shaxx#0042",
    )
    api.add_player(
        MEMBER_B,
        [(CHARACTER_B_WARLOCK, CharacterClass.WARLOCK, BASE_PERIOD)],
        display_name="Saint#0014",
    )
    return api
