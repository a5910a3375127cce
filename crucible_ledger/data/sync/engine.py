"""Moteur de synchronisation API Bungie → DuckDB.

Pipeline par (joueur, personnage, mode) :
1. Historique lu du plus récent au plus ancien jusqu'au frontier
2. Entrées rejouées du plus ancien au plus récent, découpées en pages de commit
3. Activités déjà en base ignorées sans fetch (sauf participation manquante)
4. PGCR récupéré, transformé, écrit avec son roster complet (une transaction)
5. Frontier avancé après chaque page committée

Une interruption (erreur réseau, Ctrl+C) laisse le frontier sur la dernière
page complète ; la relance reprend à partir de là sans doublon.

Usage:
    with ActivityStore(db_path) as store, ManifestStore(manifest_path) as manifest:
        async with BungieAPIClient(api_key=key) as client:
            engine = ActivitySyncEngine(store, client, manifest=manifest)
            result = await engine.sync_player(member_id, platform)
            print(result.to_message())
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from pydantic import ValidationError

from crucible_ledger.data.domain.refdata import (
    GAMBIT_PRIVATE_DIRECTOR_HASHES,
    CharacterClass,
    Mode,
)
from crucible_ledger.data.store.frontier import FrontierMarker
from crucible_ledger.data.sync.models import (
    ActivityHistoryEntry,
    SyncOptions,
    SyncResult,
)
from crucible_ledger.data.sync.transformers import transform_report
from crucible_ledger.errors import ManifestError, NotFoundError, TransportError

if TYPE_CHECKING:
    from crucible_ledger.data.manifest.store import ManifestStore
    from crucible_ledger.data.store.activity_store import ActivityStore
    from crucible_ledger.data.sync.api_client import ActivityApi

logger = logging.getLogger(__name__)


class ActivitySyncEngine:
    """Moteur de synchronisation incrémentale des activités.

    Les écritures DuckDB sont sérialisées par un lock asyncio ; seuls les
    fetchs de PGCR d'une même page se chevauchent (SyncOptions.parallel_details).
    """

    def __init__(
        self,
        store: ActivityStore,
        client: ActivityApi,
        *,
        manifest: ManifestStore | None = None,
        options: SyncOptions | None = None,
    ) -> None:
        """
        Args:
            store: Base des activités ouverte.
            client: Collaborateur API (BungieAPIClient ou fake de test).
            manifest: Manifest local pour la résolution des noms.
            options: Options par défaut.
        """
        self._store = store
        self._client = client
        self._manifest = manifest
        self._options = options or SyncOptions()
        self._db_lock = asyncio.Lock()

    # =========================================================================
    # Joueur
    # =========================================================================

    async def sync_player(
        self,
        member_id: int,
        platform: int,
        *,
        options: SyncOptions | None = None,
        raise_on_error: bool = False,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> SyncResult:
        """Synchronise tous les personnages d'un joueur.

        Args:
            member_id: Membership (résolu vers le compte primaire cross-save).
            platform: Plateforme du membership.
            options: Options de sync (défauts du moteur si None).
            raise_on_error: Relever l'erreur de transport au lieu de la
                consigner dans SyncResult.errors.
            progress_callback: Callback (page_courante, pages_totales).

        Returns:
            SyncResult avec les compteurs.
        """
        options = options or self._options
        result = SyncResult(started_at=datetime.now(timezone.utc))
        start_time = time.time()
        store = self._store

        try:
            profile = await self._client.fetch_player_profile(member_id, platform)
            member_id = profile.member_id
            logger.info(
                f"Sync {profile.display_name or member_id} ({member_id}): "
                f"{len(profile.characters)} personnages"
            )

            last_played = max(
                (c.date_last_played for c in profile.characters if c.date_last_played is not None),
                default=None,
            )
            async with self._db_lock:
                store.upsert_member(
                    profile.member_id, profile.platform, profile.display_name, seen_at=last_played
                )
                for character in profile.characters:
                    store.upsert_character(
                        character.character_id,
                        profile.member_id,
                        int(CharacterClass.from_type(character.class_type)),
                        character.date_last_played,
                    )

            if options.with_manifest and self._manifest is not None:
                await self._ensure_manifest(result)

            if options.retry_pending:
                await self._retry_pending(result, member_id)

            for character in profile.characters:
                for mode in options.modes:
                    await self._sync_character(
                        result,
                        member_id,
                        character.character_id,
                        profile.platform,
                        mode,
                        options,
                        progress_callback=progress_callback,
                    )
                result.characters_synced += 1

            if self._manifest is not None and self._manifest.is_available:
                async with self._db_lock:
                    result.references_resolved = store.resolve_pending_references(self._manifest)

            result.total_available = store.count_activities(member_id)

        except TransportError as e:
            result.errors.append(str(e))
            logger.error(f"Erreur sync {member_id}: {e}")
            if raise_on_error:
                raise
        finally:
            result.finished_at = datetime.now(timezone.utc)
            result.duration_seconds = time.time() - start_time
            if result.reference_misses:
                logger.warning(
                    f"{len(result.reference_misses)} références absentes du manifest "
                    f"(noms résolus lors d'une prochaine sync)"
                )

        return result

    async def _ensure_manifest(self, result: SyncResult) -> None:
        """Met à jour le manifest ; un échec n'interrompt pas la sync."""
        try:
            result.manifest_updated = await self._manifest.ensure_current(self._client)
        except (TransportError, ManifestError) as e:
            message = f"Manifest non mis à jour, sync avec l'ancien: {e}"
            result.warnings.append(message)
            logger.warning(message)

    # =========================================================================
    # Personnage
    # =========================================================================

    async def sync_character(
        self,
        member_id: int,
        character_id: int,
        platform: int,
        mode: Mode = Mode.ALL_PVP,
        *,
        options: SyncOptions | None = None,
    ) -> SyncResult:
        """Synchronise l'historique d'un personnage pour un mode.

        Raises:
            TransportError: Erreur réseau / API (frontier sur la dernière page committée).
        """
        result = SyncResult(started_at=datetime.now(timezone.utc))
        start_time = time.time()
        try:
            await self._sync_character(
                result, member_id, character_id, platform, mode, options or self._options
            )
        finally:
            result.finished_at = datetime.now(timezone.utc)
            result.duration_seconds = time.time() - start_time
        return result

    async def _sync_character(
        self,
        result: SyncResult,
        member_id: int,
        character_id: int,
        platform: int,
        mode: Mode,
        options: SyncOptions,
        *,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> None:
        frontier = self._store.frontier.get(member_id, character_id, mode)
        entries = await self._collect_new_entries(
            member_id, character_id, platform, mode, frontier, options
        )
        if not entries:
            logger.info(f"[{character_id}/{mode.cli_name}] déjà à jour")
            return

        logger.info(f"[{character_id}/{mode.cli_name}] {len(entries)} activités à traiter")

        # Rejeu du plus ancien au plus récent
        entries.sort(key=lambda e: e.sort_key)
        page_size = max(1, options.page_size)
        pages = [entries[i : i + page_size] for i in range(0, len(entries), page_size)]

        for index, page in enumerate(pages, start=1):
            await self._commit_page(result, member_id, character_id, mode, page, options)

            newest = page[-1]
            async with self._db_lock:
                self._store.frontier.advance(
                    member_id,
                    character_id,
                    FrontierMarker(period=newest.period, activity_id=newest.activity_id),
                    mode,
                )
            result.pages_committed += 1

            if progress_callback:
                progress_callback(index, len(pages))
            logger.info(
                f"[{character_id}/{mode.cli_name}] page {index}/{len(pages)} committée "
                f"({result.activities_inserted} insérées, {result.activities_skipped} ignorées)"
            )

    async def _collect_new_entries(
        self,
        member_id: int,
        character_id: int,
        platform: int,
        mode: Mode,
        frontier: FrontierMarker,
        options: SyncOptions,
    ) -> list[ActivityHistoryEntry]:
        """Lit l'historique (plus récent d'abord) jusqu'au frontier."""
        collected: dict[int, ActivityHistoryEntry] = {}
        page_number = 0

        while True:
            page = await self._client.fetch_activity_page(
                member_id,
                character_id,
                platform,
                mode,
                page_number,
                count=options.history_page_count,
            )

            reached_frontier = False
            for entry in page.entries:
                if frontier.covers(entry.activity_id, entry.period):
                    reached_frontier = True
                    break
                if entry.director_activity_hash in GAMBIT_PRIVATE_DIRECTOR_HASHES:
                    continue
                collected.setdefault(entry.activity_id, entry)

            page_number += 1
            if reached_frontier or not page.has_more or not page.entries:
                break
            if options.max_history_pages is not None and page_number >= options.max_history_pages:
                logger.warning(
                    f"[{character_id}/{mode.cli_name}] limite de {options.max_history_pages} pages atteinte"
                )
                break

        return list(collected.values())

    # =========================================================================
    # Page de commit
    # =========================================================================

    async def _commit_page(
        self,
        result: SyncResult,
        member_id: int,
        character_id: int,
        mode: Mode,
        page: list[ActivityHistoryEntry],
        options: SyncOptions,
    ) -> None:
        """Écrit toutes les activités d'une page (ou lève TransportError)."""
        store = self._store
        async with self._db_lock:
            existing = store.existing_activity_ids(e.activity_id for e in page)
            to_fetch = []
            for entry in page:
                if entry.activity_id in existing and store.has_participation(
                    entry.activity_id, member_id, character_id
                ):
                    result.activities_skipped += 1
                    continue
                to_fetch.append(entry)

        if not to_fetch:
            return

        semaphore = asyncio.Semaphore(max(1, options.parallel_details))

        async def _process(entry: ActivityHistoryEntry) -> None:
            async with semaphore:
                await self._fetch_and_write(
                    result, entry.activity_id, member_id, character_id, mode, entry.period
                )

        outcomes = await asyncio.gather(*(_process(e) for e in to_fetch), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    async def _fetch_and_write(
        self,
        result: SyncResult,
        activity_id: int,
        member_id: int,
        character_id: int,
        mode: Mode | int | None,
        period: datetime | None,
    ) -> bool:
        """Récupère un PGCR et l'écrit. Un PGCR introuvable / invalide part en file d'attente.

        Returns:
            True si l'activité est désormais en base.
        """
        try:
            report = await self._client.fetch_activity_detail(activity_id)
        except NotFoundError as e:
            await self._queue_pending(result, activity_id, member_id, character_id, mode, period, str(e))
            return False
        except ValidationError as e:
            reason = f"PGCR invalide: {e.error_count()} erreurs"
            await self._queue_pending(result, activity_id, member_id, character_id, mode, period, reason)
            return False

        rows, misses = transform_report(report, self._manifest)
        async with self._db_lock:
            outcome = self._store.write_activity(rows)

        result.reference_misses.extend(misses)
        if outcome.activity_inserted:
            result.activities_inserted += 1
        elif outcome.players_added > 0:
            result.participations_repaired += 1
            logger.info(f"Activité {activity_id}: {outcome.players_added} lignes de roster ajoutées")
        else:
            result.activities_skipped += 1
        return True

    async def _queue_pending(
        self,
        result: SyncResult,
        activity_id: int,
        member_id: int,
        character_id: int,
        mode: Mode | int | None,
        period: datetime | None,
        reason: str,
    ) -> None:
        async with self._db_lock:
            self._store.queue_pending(
                activity_id,
                member_id,
                character_id,
                mode=int(mode) if mode is not None else None,
                period=period,
                reason=reason,
            )
        result.pending_queued += 1
        message = f"Activité {activity_id} mise en attente: {reason}"
        result.warnings.append(message)
        logger.warning(message)

    async def _retry_pending(self, result: SyncResult, member_id: int) -> None:
        """Retente les activités en attente du joueur."""
        pending = self._store.pending_activities(member_id)
        if not pending:
            return
        logger.info(f"{len(pending)} activités en attente à retenter")

        for item in pending:
            queued_before = result.pending_queued
            written = await self._fetch_and_write(
                result,
                item.activity_id,
                item.member_id,
                item.character_id,
                item.mode,
                item.period,
            )
            if written:
                result.pending_resolved += 1
            else:
                # Toujours en attente : ne pas la compter comme nouvelle
                result.pending_queued = queued_before
