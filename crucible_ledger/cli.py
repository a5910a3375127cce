"""Point d'entrée CLI de Crucible Ledger.

Sous-commandes :
- manifest : met à jour le manifest local
- search : cherche un hash dans le manifest
- sync : synchronise l'historique d'un joueur
- last : dernière activité (ou activité par index) avec ratings
- stats : agrégats, armes et médailles sur un moment (weekly, season, ...)
- status : activité en cours d'un joueur

Usage:
    crucible-ledger sync --member-id 4611686018467284386 --platform steam
    crucible-ledger last --member-id 4611686018467284386 --platform steam --weapons 5
    crucible-ledger stats --member-id 4611686018467284386 --moment weekly
    crucible-ledger search --hash 1363886209
    crucible-ledger status --member-id 4611686018467284386 --platform steam

La sortie est en lignes séparées par des tabulations.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from crucible_ledger.analysis.rating import compute_ratings
from crucible_ledger.analysis.stats import aggregate_performances
from crucible_ledger.config import LedgerConfig
from crucible_ledger.data.domain.models import ActivityDetail
from crucible_ledger.data.domain.moments import Moment
from crucible_ledger.data.domain.refdata import (
    DEFAULT_SYNC_MODES,
    UNKNOWN_LABEL,
    CharacterClassSelection,
    Mode,
    Platform,
    Standing,
    parse_modes,
)
from crucible_ledger.data.manifest.store import ManifestStore, ReferenceKind
from crucible_ledger.data.repositories.activity_queries import ActivityQueries
from crucible_ledger.data.store.activity_store import ActivityStore
from crucible_ledger.data.sync.api_client import BungieAPIClient
from crucible_ledger.data.sync.engine import ActivitySyncEngine
from crucible_ledger.data.sync.models import CurrentActivity, SyncOptions, SyncResult
from crucible_ledger.errors import CrucibleLedgerError, SchemaVersionMismatch, StoreNotFound

logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================


def _print_row(*values: object) -> None:
    print("\t".join("" if v is None else str(v) for v in values))


def _client(config: LedgerConfig) -> BungieAPIClient:
    return BungieAPIClient(
        api_key=config.api_key or "",
        timeout_seconds=config.request_timeout_seconds,
    )


async def _run_sync(
    config: LedgerConfig,
    store: ActivityStore,
    manifest: ManifestStore,
    member_id: int,
    platform: int,
    options: SyncOptions,
) -> SyncResult:
    async with _client(config) as client:
        engine = ActivitySyncEngine(store, client, manifest=manifest, options=options)
        return await engine.sync_player(member_id, platform, raise_on_error=True)


def _report_sync(result: SyncResult, store: ActivityStore) -> None:
    logger.info(result.to_message())
    logger.debug(f"Résumé sync : {result.to_dict()}")
    for message in result.warnings:
        logger.debug(message)
    _print_row("total_synced", result.activities_inserted)
    _print_row("total_available", result.total_available)
    _print_row("path", store.db_path)


def _sync_options(args: argparse.Namespace, modes: tuple[Mode, ...]) -> SyncOptions:
    return SyncOptions(
        modes=modes,
        page_size=args.page_size,
        parallel_details=args.parallel,
    )


# =============================================================================
# Sous-commandes
# =============================================================================


def cmd_manifest(args: argparse.Namespace, config: LedgerConfig) -> int:
    async def _update() -> bool:
        async with _client(config) as client:
            return await manifest.ensure_current(client)

    with ManifestStore(config.manifest_db_path) as manifest:
        updated = asyncio.run(_update())
        _print_row("version", manifest.version)
        _print_row("updated", updated)
        _print_row("path", manifest.manifest_db_path)
    return 0


def cmd_search(args: argparse.Namespace, config: LedgerConfig) -> int:
    with ManifestStore(config.manifest_db_path) as manifest:
        if not manifest.is_available:
            logger.error("Manifest absent : lancer `crucible-ledger manifest` d'abord")
            return 1
        entries = manifest.find(args.hash)
        if not entries:
            print(f"Aucune définition pour le hash {args.hash}")
            return 0
        for entry in entries:
            _print_row(entry.kind.value, entry.hash, entry.name, entry.type_name, entry.description)
    return 0


def cmd_sync(args: argparse.Namespace, config: LedgerConfig) -> int:
    modes = tuple(parse_modes(args.mode)) if args.mode else DEFAULT_SYNC_MODES
    store = ActivityStore(config.activity_db_path, config=config)
    try:
        if args.reset_store:
            store.reset()
        with ManifestStore(config.manifest_db_path) as manifest:
            result = asyncio.run(
                _run_sync(config, store, manifest, args.member_id, args.platform, _sync_options(args, modes))
            )
        _report_sync(result, store)
    finally:
        store.close()
    return 0


def _print_activity(
    detail: ActivityDetail,
    ratings: dict[int, float],
    weapons_top: int,
    medals_top: int = 0,
) -> None:
    _print_row("activity_id", detail.activity_id)
    _print_row("period", detail.period.isoformat())
    _print_row("mode", Mode.from_value(detail.mode).cli_name)
    _print_row("map", detail.map_label)
    if detail.player is not None:
        _print_row("standing", Standing(detail.player.standing).name.lower())
        _print_row("medals", detail.player.all_medals_earned)
    for team in detail.teams:
        _print_row("team", team.team_id, team.score, Standing(team.standing).name.lower())
        for p in team.players:
            rating = ratings.get(p.member_id)
            _print_row(
                "",
                p.name_label,
                p.character_class.name.lower(),
                p.kills,
                p.deaths,
                p.assists,
                f"{p.efficiency:.2f}",
                f"{rating:.0f}" if rating is not None else UNKNOWN_LABEL,
            )
    if detail.player is not None and weapons_top > 0:
        weapons = detail.weapons_for(detail.player.member_id, detail.player.character_id)
        for w in weapons[:weapons_top]:
            _print_row("weapon", w.name_label, w.weapon_type or UNKNOWN_LABEL, w.kills, w.precision_kills)
    if detail.player is not None and medals_top > 0:
        medals = detail.medals_for(detail.player.member_id, detail.player.character_id)
        for m in medals[:medals_top]:
            _print_row("medal", m.name_label, m.count)


def cmd_last(args: argparse.Namespace, config: LedgerConfig) -> int:
    modes = parse_modes(args.mode)
    now = datetime.now(timezone.utc)
    store = ActivityStore(config.activity_db_path, config=config)
    try:
        if not args.no_sync:
            if args.platform is None:
                logger.error("--platform est requis sans --no-sync")
                return 1
            with ManifestStore(config.manifest_db_path) as manifest:
                result = asyncio.run(
                    _run_sync(
                        config, store, manifest, args.member_id, args.platform,
                        _sync_options(args, DEFAULT_SYNC_MODES),
                    )
                )
            logger.info(result.to_message())

        queries = ActivityQueries(store.connection)
        if args.index is not None:
            detail = queries.get_activity_by_index(args.index, member_id=args.member_id, modes=modes)
        else:
            detail = queries.get_last_activity(args.member_id, args.class_selection, modes)

        history = queries.get_activities_in_window(
            args.member_id, Moment.ALL_TIME, modes, CharacterClassSelection.ALL, now=now
        )
        replay_ids = [p.activity_id for p in history if (p.period, p.activity_id) <= (detail.period, detail.activity_id)]
        ratings = compute_ratings(
            queries.get_roster_rows(replay_ids), tracked_member_id=args.member_id
        ).ratings

        _print_activity(detail, ratings, args.weapons, args.medals)
    finally:
        store.close()
    return 0


def cmd_stats(args: argparse.Namespace, config: LedgerConfig) -> int:
    modes = parse_modes(args.mode)
    now = datetime.now(timezone.utc)
    with ActivityQueries.open(config.activity_db_path) as queries:
        performances = queries.get_activities_in_window(
            args.member_id, args.moment, modes, args.class_selection, now=now
        )
        stats = aggregate_performances(performances)
        _print_row("moment", args.moment.value)
        for key, value in stats.to_dict().items():
            if isinstance(value, float):
                value = f"{value:.2f}"
            _print_row(key, value)

        if args.weapons > 0 and performances:
            weapons = queries.get_weapon_stats(
                args.member_id,
                window=args.moment,
                modes=modes,
                class_selection=args.class_selection,
                top_n=args.weapons,
                now=now,
            )
            for row in weapons.iter_rows(named=True):
                _print_row(
                    "weapon",
                    row["weapon_name"],
                    row["weapon_type"],
                    row["kills"],
                    f"{row['precision_ratio']:.2f}",
                    row["activity_count"],
                )

        if args.medals > 0 and performances:
            medals = queries.get_medal_stats(
                args.member_id,
                window=args.moment,
                modes=modes,
                class_selection=args.class_selection,
                top_n=args.medals,
                now=now,
            )
            for row in medals.iter_rows(named=True):
                _print_row("medal", row["medal_name"], row["count"], row["activity_count"])
    return 0


def cmd_status(args: argparse.Namespace, config: LedgerConfig) -> int:
    async def _fetch() -> CurrentActivity | None:
        async with _client(config) as client:
            return await client.fetch_current_activity(args.member_id, args.platform)

    current = asyncio.run(_fetch())
    if current is None:
        _print_row("status", "offline")
        return 0
    if current.in_orbit:
        _print_row("status", "in_orbit")
        _print_row("character_id", current.character_id)
        return 0

    with ManifestStore(config.manifest_db_path) as manifest:
        if not manifest.is_available:
            logger.warning("Manifest absent : lancer `crucible-ledger manifest` pour résoudre les noms")
        playlist = manifest.resolve_name(current.playlist_activity_hash, ReferenceKind.ACTIVITY)
        map_name = manifest.resolve_name(current.activity_hash, ReferenceKind.ACTIVITY)
        mode = Mode.from_value(current.activity_mode_type)
        mode_label = (
            mode.cli_name
            if mode is not Mode.NONE
            else manifest.resolve_name(current.activity_mode_hash, ReferenceKind.ACTIVITY_MODE)
        )

    _print_row("status", "in_activity")
    _print_row("activity", playlist or UNKNOWN_LABEL)
    _print_row("mode", mode_label or UNKNOWN_LABEL)
    _print_row("map", map_name or UNKNOWN_LABEL)
    _print_row("character_id", current.character_id)
    _print_row("started", current.started_at.isoformat() if current.started_at else None)
    return 0


# =============================================================================
# Parser
# =============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crucible-ledger",
        description="Historique Crucible Destiny 2 consultable hors ligne",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Exemples:
  crucible-ledger manifest                                   # Met à jour le manifest
  crucible-ledger search --hash 1363886209                   # Cherche un hash
  crucible-ledger sync --member-id 4611686018467284386 --platform steam
  crucible-ledger last --member-id 4611686018467284386 --no-sync --index 3
  crucible-ledger stats --member-id 4611686018467284386 --moment weekly
  crucible-ledger status --member-id 4611686018467284386 --platform steam
        """,
    )
    parser.add_argument("--data-dir", type=str, default=None, help="Dossier des bases DuckDB")
    parser.add_argument("--api-key", type=str, default=None, help="Clé API Bungie")
    parser.add_argument("-v", "--verbose", action="store_true", help="Logs détaillés (DEBUG)")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("manifest", help="Met à jour le manifest local")

    search = sub.add_parser("search", help="Cherche un hash dans le manifest")
    search.add_argument("--hash", type=int, required=True, help="Hash de définition")

    def _player_args(p: argparse.ArgumentParser, *, platform_required: bool) -> None:
        p.add_argument("--member-id", type=int, required=True, help="Membership id Destiny 2")
        p.add_argument(
            "--platform",
            type=Platform.from_name,
            required=platform_required,
            default=None,
            help="Plateforme (xbox, psn, steam, stadia ou id)",
        )

    def _sync_tuning(p: argparse.ArgumentParser) -> None:
        p.add_argument("--page-size", type=int, default=20, help="Activités par page de commit")
        p.add_argument("--parallel", type=int, default=4, help="PGCR récupérés en parallèle")

    sync = sub.add_parser("sync", help="Synchronise l'historique d'un joueur")
    _player_args(sync, platform_required=True)
    sync.add_argument(
        "--mode",
        action="append",
        default=None,
        help="Historique à synchroniser (répétable, défaut: all_pvp + all_private)",
    )
    sync.add_argument(
        "--reset-store",
        action="store_true",
        help="Supprime la base des activités et resynchronise tout",
    )
    _sync_tuning(sync)

    last = sub.add_parser("last", help="Dernière activité (ou par index) avec ratings")
    _player_args(last, platform_required=False)
    last.add_argument(
        "--class",
        dest="class_selection",
        type=CharacterClassSelection.from_name,
        default=CharacterClassSelection.LAST_ACTIVE,
        help="hunter, titan, warlock, last_active ou all",
    )
    last.add_argument("--mode", action="append", default=None, help="Filtre de mode (défaut: all_pvp)")
    last.add_argument("--index", type=int, default=None, help="Index positionnel (0 = plus récente)")
    last.add_argument("--weapons", type=int, default=5, help="Nombre d'armes affichées")
    last.add_argument("--medals", type=int, default=5, help="Nombre de médailles affichées")
    last.add_argument("--no-sync", action="store_true", help="Ne pas synchroniser avant l'affichage")
    _sync_tuning(last)

    stats = sub.add_parser("stats", help="Agrégats sur un moment")
    stats.add_argument("--member-id", type=int, required=True, help="Membership id Destiny 2")
    stats.add_argument(
        "--moment",
        type=Moment.from_name,
        default=Moment.WEEKLY,
        help="daily, weekend, weekly, day, week, month, season, all_time, ...",
    )
    stats.add_argument("--mode", action="append", default=None, help="Filtre de mode (défaut: all_pvp)")
    stats.add_argument(
        "--class",
        dest="class_selection",
        type=CharacterClassSelection.from_name,
        default=CharacterClassSelection.ALL,
        help="hunter, titan, warlock, last_active ou all",
    )
    stats.add_argument("--weapons", type=int, default=5, help="Nombre d'armes affichées")
    stats.add_argument("--medals", type=int, default=5, help="Nombre de médailles affichées")

    status = sub.add_parser("status", help="Activité en cours d'un joueur")
    _player_args(status, platform_required=True)

    return parser


COMMANDS = {
    "manifest": cmd_manifest,
    "search": cmd_search,
    "sync": cmd_sync,
    "last": cmd_last,
    "stats": cmd_stats,
    "status": cmd_status,
}


def main(argv: list[str] | None = None) -> int:
    """Point d'entrée principal."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    config = LedgerConfig(api_key=args.api_key)
    if args.data_dir:
        config.data_dir = Path(args.data_dir)

    try:
        return COMMANDS[args.command](args, config)
    except StoreNotFound as e:
        logger.error(f"{e} Lancer `crucible-ledger sync` d'abord.")
        return 1
    except SchemaVersionMismatch as e:
        logger.error(f"{e} Relancer `crucible-ledger sync --reset-store`.")
        return 1
    except CrucibleLedgerError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrompu : la prochaine sync reprendra à la dernière page committée")
        return 130


if __name__ == "__main__":
    sys.exit(main())
