"""Base DuckDB des activités : ouverture, écriture atomique, file d'attente.

Chemin d'écriture utilisé uniquement par le moteur de sync. L'unicité est
garantie par les clés primaires (INSERT OR IGNORE), et une activité est
toujours écrite avec son roster complet dans une seule transaction.

Usage:
    with ActivityStore("data/activities.duckdb") as store:
        outcome = store.write_activity(rows)
        marker = store.frontier.get(member_id, character_id)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

import duckdb

from crucible_ledger.data.domain.moments import to_naive_utc
from crucible_ledger.data.manifest.store import ReferenceKind
from crucible_ledger.data.store.frontier import SyncFrontierTracker
from crucible_ledger.data.store.schema import (
    ACTIVITY_TABLES,
    drop_schema,
    ensure_schema,
)
from crucible_ledger.errors import StoreBusyError

if TYPE_CHECKING:
    from crucible_ledger.config import LedgerConfig
    from crucible_ledger.data.manifest.store import ManifestStore
    from crucible_ledger.data.sync.models import ActivityRows

logger = logging.getLogger(__name__)


@dataclass
class WriteOutcome:
    """Résultat de l'écriture d'une activité."""

    activity_inserted: bool
    players_added: int


@dataclass
class PendingActivity:
    """Activité listée dont le PGCR n'a pas pu être récupéré."""

    activity_id: int
    member_id: int
    character_id: int
    mode: int | None
    period: datetime | None
    reason: str | None
    attempts: int


def connect_store(
    db_path: Path,
    *,
    read_only: bool = False,
    config: LedgerConfig | None = None,
) -> duckdb.DuckDBPyConnection:
    """Ouvre une connexion DuckDB sur la base des activités.

    Raises:
        StoreBusyError: Fichier verrouillé par un autre processus.
    """
    if not read_only:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        conn = duckdb.connect(str(db_path), read_only=read_only)
    except duckdb.IOException as e:
        if "lock" in str(e).lower():
            raise StoreBusyError(f"{db_path} est utilisé par un autre processus: {e}") from e
        raise

    if config is not None:
        config.apply(conn)
    else:
        conn.execute("SET memory_limit = '512MB'")
    return conn


class ActivityStore:
    """Base des activités (lecture/écriture).

    Args:
        db_path: Chemin vers activities.duckdb.
        config: Configuration DuckDB (memory_limit, threads).
    """

    def __init__(self, db_path: Path | str, *, config: LedgerConfig | None = None) -> None:
        self.db_path = Path(db_path)
        self._config = config
        self._connection: duckdb.DuckDBPyConnection | None = None
        self._frontier: SyncFrontierTracker | None = None

    def __enter__(self) -> ActivityStore:
        self.connection  # noqa: B018 - ouverture + vérification du schéma
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """Connexion DuckDB (ouverte à la demande, schéma vérifié).

        Raises:
            SchemaVersionMismatch: Base d'une autre version.
            StoreBusyError: Base verrouillée.
        """
        if self._connection is None:
            conn = connect_store(self.db_path, config=self._config)
            try:
                ensure_schema(conn, str(self.db_path))
            except Exception:
                conn.close()
                raise
            self._connection = conn
        return self._connection

    @property
    def frontier(self) -> SyncFrontierTracker:
        if self._frontier is None:
            self._frontier = SyncFrontierTracker(self.connection)
        return self._frontier

    def close(self) -> None:
        """Ferme la connexion DuckDB."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            self._frontier = None

    def reset(self) -> None:
        """Ré-acquisition complète : supprime toutes les données et recrée le schéma.

        Seul remède à une SchemaVersionMismatch.
        """
        self.close()
        conn = connect_store(self.db_path, config=self._config)
        try:
            drop_schema(conn)
            ensure_schema(conn, str(self.db_path))
        except Exception:
            conn.close()
            raise
        self._connection = conn
        logger.warning(f"Base des activités réinitialisée: {self.db_path}")

    # =========================================================================
    # Lectures utilisées par le moteur de sync
    # =========================================================================

    def has_activity(self, activity_id: int) -> bool:
        row = self.connection.execute(
            "SELECT 1 FROM activity WHERE activity_id = ?", [activity_id]
        ).fetchone()
        return row is not None

    def existing_activity_ids(self, activity_ids: Iterable[int]) -> set[int]:
        """Sous-ensemble des ids déjà présents en base."""
        ids = list({int(a) for a in activity_ids})
        if not ids:
            return set()
        rows = self.connection.execute(
            "SELECT activity_id FROM activity WHERE list_contains(?, activity_id)",
            [ids],
        ).fetchall()
        return {int(r[0]) for r in rows}

    def has_participation(self, activity_id: int, member_id: int, character_id: int) -> bool:
        row = self.connection.execute(
            """
            SELECT 1 FROM activity_player
            WHERE activity_id = ? AND member_id = ? AND character_id = ?
            """,
            [activity_id, member_id, character_id],
        ).fetchone()
        return row is not None

    # =========================================================================
    # Joueurs et personnages
    # =========================================================================

    def upsert_member(
        self,
        member_id: int,
        platform: int,
        display_name: str | None,
        seen_at: datetime | None = None,
    ) -> None:
        """Insère ou met à jour un joueur (le nom vu le plus récemment gagne).

        `seen_at` date l'observation (période d'activité, dernière partie).
        Sans date, le nom ne remplace qu'un nom absent.
        """
        self._upsert_members(self.connection, [(member_id, platform, display_name, seen_at)])

    def upsert_character(
        self,
        character_id: int,
        member_id: int,
        class_id: int,
        last_played: datetime | None = None,
    ) -> None:
        """Insère ou met à jour un personnage suivi (classe, dernière partie)."""
        self.connection.execute(
            """
            INSERT INTO player_character (character_id, member_id, class, last_played)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (character_id) DO UPDATE SET
                class = excluded.class,
                last_played = COALESCE(excluded.last_played, player_character.last_played)
            """,
            [character_id, member_id, class_id, to_naive_utc(last_played) if last_played else None],
        )

    @staticmethod
    def _upsert_members(
        conn: duckdb.DuckDBPyConnection,
        members: list[tuple[int, int, str | None, datetime | None]],
    ) -> None:
        # updated_at vient des données (période, dernière partie) : rejouer le
        # même upsert laisse la ligne identique
        for member_id, platform, display_name, seen_at in members:
            seen = to_naive_utc(seen_at) if seen_at else None
            conn.execute(
                """
                INSERT INTO member (member_id, platform, display_name, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (member_id) DO UPDATE SET
                    display_name = CASE
                        WHEN excluded.display_name IS NULL THEN member.display_name
                        WHEN member.display_name IS NULL THEN excluded.display_name
                        WHEN excluded.updated_at >= COALESCE(member.updated_at, TIMESTAMP '1970-01-01')
                        THEN excluded.display_name
                        ELSE member.display_name
                    END,
                    platform = CASE
                        WHEN excluded.updated_at >= COALESCE(member.updated_at, TIMESTAMP '1970-01-01')
                        THEN excluded.platform
                        ELSE member.platform
                    END,
                    updated_at = CASE
                        WHEN excluded.updated_at IS NULL THEN member.updated_at
                        WHEN member.updated_at IS NULL THEN excluded.updated_at
                        ELSE greatest(member.updated_at, excluded.updated_at)
                    END
                """,
                [member_id, platform, display_name, seen],
            )

    # =========================================================================
    # Écriture atomique
    # =========================================================================

    def write_activity(self, rows: ActivityRows) -> WriteOutcome:
        """Écrit une activité et son roster complet dans une transaction.

        Si l'activité existe déjà, seules les lignes de roster manquantes sont
        insérées (réparation d'une participation absente).

        Returns:
            WriteOutcome (activité insérée ?, nombre de joueurs ajoutés).
        """
        conn = self.connection
        activity = rows.activity
        activity_id = activity.activity_id

        conn.execute("BEGIN TRANSACTION")
        try:
            exists = (
                conn.execute("SELECT 1 FROM activity WHERE activity_id = ?", [activity_id]).fetchone()
                is not None
            )
            if not exists:
                conn.execute(
                    """
                    INSERT INTO activity (
                        activity_id, period, mode, platform, reference_hash,
                        director_activity_hash, is_private, map_name, roster_size, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        activity_id,
                        to_naive_utc(activity.period),
                        activity.mode,
                        activity.platform,
                        activity.reference_hash,
                        activity.director_activity_hash,
                        activity.is_private,
                        activity.map_name,
                        activity.roster_size,
                        to_naive_utc(datetime.now(timezone.utc)),
                    ],
                )
                if rows.modes:
                    conn.executemany(
                        "INSERT OR IGNORE INTO activity_mode (activity_id, mode) VALUES (?, ?)",
                        [[activity_id, m] for m in rows.modes],
                    )
                if rows.teams:
                    conn.executemany(
                        """
                        INSERT OR IGNORE INTO team_result (activity_id, team_id, score, standing)
                        VALUES (?, ?, ?, ?)
                        """,
                        [[t.activity_id, t.team_id, t.score, t.standing] for t in rows.teams],
                    )

            present = {
                (int(r[0]), int(r[1]))
                for r in conn.execute(
                    "SELECT member_id, character_id FROM activity_player WHERE activity_id = ?",
                    [activity_id],
                ).fetchall()
            }
            new_players = []
            seen_keys: set[tuple[int, int]] = set()
            for p in rows.players:
                key = (p.member_id, p.character_id)
                if key in present or key in seen_keys:
                    continue
                seen_keys.add(key)
                new_players.append(p)

            # Un joueur par member_id (dernier vu) pour l'upsert
            members = {
                p.member_id: (p.member_id, p.platform, p.display_name, activity.period)
                for p in new_players
            }
            self._upsert_members(conn, list(members.values()))

            if new_players:
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO player_character (character_id, member_id, class, last_played)
                    VALUES (?, ?, ?, NULL)
                    """,
                    [[p.character_id, p.member_id, p.class_id] for p in new_players],
                )
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO activity_player (
                        activity_id, member_id, character_id, class, light_level, team,
                        standing, completion_reason, completed, kills, deaths, assists,
                        score, opponents_defeated, precision_kills, ability_kills,
                        grenade_kills, melee_kills, super_kills, time_played_seconds,
                        activity_duration_seconds, start_seconds, player_count, team_score,
                        all_medals_earned
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        [
                            p.activity_id,
                            p.member_id,
                            p.character_id,
                            p.class_id,
                            p.light_level,
                            p.team,
                            p.standing,
                            p.completion_reason,
                            p.completed,
                            p.kills,
                            p.deaths,
                            p.assists,
                            p.score,
                            p.opponents_defeated,
                            p.precision_kills,
                            p.ability_kills,
                            p.grenade_kills,
                            p.melee_kills,
                            p.super_kills,
                            p.time_played_seconds,
                            p.activity_duration_seconds,
                            p.start_seconds,
                            p.player_count,
                            p.team_score,
                            p.all_medals_earned,
                        ]
                        for p in new_players
                    ],
                )

            weapons = [w for w in rows.weapons if (w.member_id, w.character_id) in seen_keys]
            if weapons:
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO weapon_stat (
                        activity_id, member_id, character_id, weapon_hash,
                        kills, precision_kills, weapon_name, weapon_type
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        [
                            w.activity_id,
                            w.member_id,
                            w.character_id,
                            w.weapon_hash,
                            w.kills,
                            w.precision_kills,
                            w.weapon_name,
                            w.weapon_type,
                        ]
                        for w in weapons
                    ],
                )

            medals = [m for m in rows.medals if (m.member_id, m.character_id) in seen_keys]
            if medals:
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO medal_stat (
                        activity_id, member_id, character_id, medal_id, count, medal_name
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        [m.activity_id, m.member_id, m.character_id, m.medal_id, m.count, m.medal_name]
                        for m in medals
                    ],
                )

            conn.execute("DELETE FROM pending_activity WHERE activity_id = ?", [activity_id])
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise

        return WriteOutcome(activity_inserted=not exists, players_added=len(new_players))

    # =========================================================================
    # File d'attente (PGCR introuvables / invalides)
    # =========================================================================

    def queue_pending(
        self,
        activity_id: int,
        member_id: int,
        character_id: int,
        *,
        mode: int | None = None,
        period: datetime | None = None,
        reason: str | None = None,
    ) -> None:
        now = to_naive_utc(datetime.now(timezone.utc))
        self.connection.execute(
            """
            INSERT INTO pending_activity (
                activity_id, member_id, character_id, mode, period, reason,
                attempts, first_seen, last_attempt
            ) VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)
            ON CONFLICT (activity_id, member_id, character_id) DO UPDATE SET
                attempts = pending_activity.attempts + 1,
                reason = excluded.reason,
                last_attempt = excluded.last_attempt
            """,
            [
                activity_id,
                member_id,
                character_id,
                mode,
                to_naive_utc(period) if period else None,
                reason,
                now,
                now,
            ],
        )

    def pending_activities(self, member_id: int | None = None) -> list[PendingActivity]:
        sql = """
            SELECT activity_id, member_id, character_id, mode, period, reason, attempts
            FROM pending_activity
        """
        params: list[object] = []
        if member_id is not None:
            sql += " WHERE member_id = ?"
            params.append(member_id)
        sql += " ORDER BY period, activity_id"
        return [
            PendingActivity(
                activity_id=int(r[0]),
                member_id=int(r[1]),
                character_id=int(r[2]),
                mode=r[3],
                period=r[4],
                reason=r[5],
                attempts=int(r[6] or 0),
            )
            for r in self.connection.execute(sql, params).fetchall()
        ]

    def remove_pending(self, activity_id: int) -> None:
        self.connection.execute("DELETE FROM pending_activity WHERE activity_id = ?", [activity_id])

    # =========================================================================
    # Références en attente
    # =========================================================================

    def resolve_pending_references(self, manifest: ManifestStore) -> int:
        """Complète les noms restés NULL (manifest en retard lors de l'écriture).

        Returns:
            Nombre de références résolues (hashes et médailles).
        """
        conn = self.connection
        resolved = 0

        map_hashes = [
            int(r[0])
            for r in conn.execute(
                "SELECT DISTINCT reference_hash FROM activity "
                "WHERE map_name IS NULL AND reference_hash IS NOT NULL AND reference_hash <> 0"
            ).fetchall()
        ]
        for hash_value in map_hashes:
            entry = manifest.resolve(hash_value, ReferenceKind.ACTIVITY)
            if entry is None or entry.name is None:
                continue
            conn.execute(
                "UPDATE activity SET map_name = ? WHERE reference_hash = ? AND map_name IS NULL",
                [entry.name, hash_value],
            )
            resolved += 1

        weapon_hashes = [
            int(r[0])
            for r in conn.execute(
                "SELECT DISTINCT weapon_hash FROM weapon_stat WHERE weapon_name IS NULL"
            ).fetchall()
        ]
        for hash_value in weapon_hashes:
            entry = manifest.resolve(hash_value, ReferenceKind.ITEM)
            if entry is None or entry.name is None:
                continue
            conn.execute(
                """
                UPDATE weapon_stat SET weapon_name = ?, weapon_type = ?
                WHERE weapon_hash = ? AND weapon_name IS NULL
                """,
                [entry.name, entry.type_name, hash_value],
            )
            resolved += 1

        medal_ids = [
            r[0]
            for r in conn.execute(
                "SELECT DISTINCT medal_id FROM medal_stat WHERE medal_name IS NULL"
            ).fetchall()
        ]
        for stat_id in medal_ids:
            medal = manifest.resolve_medal(stat_id)
            if medal is None or medal.name is None:
                continue
            conn.execute(
                "UPDATE medal_stat SET medal_name = ? WHERE medal_id = ? AND medal_name IS NULL",
                [medal.name, stat_id],
            )
            resolved += 1

        if resolved:
            logger.info(f"{resolved} références résolues a posteriori")
        return resolved

    # =========================================================================
    # Diagnostics
    # =========================================================================

    def count_activities(self, member_id: int | None = None) -> int:
        """Nombre d'activités en base (toutes, ou celles d'un joueur)."""
        if member_id is None:
            row = self.connection.execute("SELECT COUNT(*) FROM activity").fetchone()
        else:
            row = self.connection.execute(
                "SELECT COUNT(DISTINCT activity_id) FROM activity_player WHERE member_id = ?",
                [member_id],
            ).fetchone()
        return int(row[0])

    def counts(self) -> dict[str, int]:
        """Nombre de lignes par table."""
        conn = self.connection
        return {
            table: int(conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
            for table in ACTIVITY_TABLES
        }
