"""Frontière de synchronisation (dernière activité committée).

Une ligne par (member_id, character_id, mode) : période et identifiant de la
plus récente activité dont la page d'écriture a été committée. La frontière
n'avance que vers l'avant ; seule une resynchronisation complète la supprime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from crucible_ledger.data.domain.moments import ensure_utc, to_naive_utc
from crucible_ledger.data.domain.refdata import Mode

if TYPE_CHECKING:
    import duckdb

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class FrontierMarker:
    """Position dans l'historique, ordonnée par (period, activity_id)."""

    period: datetime
    activity_id: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "period", ensure_utc(self.period))

    @property
    def is_full_history(self) -> bool:
        return self.activity_id == 0

    def covers(self, activity_id: int, period: datetime) -> bool:
        """True si l'activité est à / avant la frontière (déjà synchronisée)."""
        if self.is_full_history:
            return False
        if activity_id == self.activity_id:
            return True
        return (ensure_utc(period), activity_id) <= (self.period, self.activity_id)


# Sentinelle "aucune sync" : tout l'historique est à récupérer
FULL_HISTORY = FrontierMarker(period=datetime(1970, 1, 1, tzinfo=timezone.utc), activity_id=0)


class SyncFrontierTracker:
    """Lecture / avancement monotone de la frontière de sync.

    Args:
        conn: Connexion DuckDB de la base des activités (schéma déjà créé).
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self._conn = conn

    def get(self, member_id: int, character_id: int, mode: Mode = Mode.ALL_PVP) -> FrontierMarker:
        """Dernier marqueur synchronisé, ou FULL_HISTORY."""
        row = self._conn.execute(
            """
            SELECT last_period, last_activity_id
            FROM sync_frontier
            WHERE member_id = ? AND character_id = ? AND mode = ?
            """,
            [member_id, character_id, int(mode)],
        ).fetchone()
        if not row:
            return FULL_HISTORY
        return FrontierMarker(period=row[0], activity_id=int(row[1]))

    def advance(
        self,
        member_id: int,
        character_id: int,
        marker: FrontierMarker,
        mode: Mode = Mode.ALL_PVP,
    ) -> bool:
        """Avance la frontière. Un marqueur plus ancien ou égal est ignoré.

        Returns:
            True si la frontière a bougé.
        """
        if marker.is_full_history:
            return False

        conn = self._conn
        conn.execute("BEGIN TRANSACTION")
        try:
            current = self.get(member_id, character_id, mode)
            if not current.is_full_history and marker <= current:
                conn.execute("ROLLBACK")
                logger.debug(
                    f"Frontière {member_id}/{character_id}/{mode.name}: "
                    f"{marker.activity_id} <= {current.activity_id}, inchangée"
                )
                return False

            conn.execute(
                """
                INSERT INTO sync_frontier
                    (member_id, character_id, mode, last_activity_id, last_period, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (member_id, character_id, mode) DO UPDATE SET
                    last_activity_id = EXCLUDED.last_activity_id,
                    last_period = EXCLUDED.last_period,
                    updated_at = EXCLUDED.updated_at
                """,
                [
                    member_id,
                    character_id,
                    int(mode),
                    marker.activity_id,
                    to_naive_utc(marker.period),
                    to_naive_utc(datetime.now(timezone.utc)),
                ],
            )
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise
        return True

    def reset(self, member_id: int | None = None) -> int:
        """Supprime les frontières (toutes, ou celles d'un joueur).

        Returns:
            Nombre de lignes supprimées.
        """
        if member_id is None:
            count = self._conn.execute("SELECT COUNT(*) FROM sync_frontier").fetchone()[0]
            self._conn.execute("DELETE FROM sync_frontier")
        else:
            count = self._conn.execute(
                "SELECT COUNT(*) FROM sync_frontier WHERE member_id = ?", [member_id]
            ).fetchone()[0]
            self._conn.execute("DELETE FROM sync_frontier WHERE member_id = ?", [member_id])
        logger.info(f"Frontière réinitialisée ({count} lignes)")
        return int(count)
