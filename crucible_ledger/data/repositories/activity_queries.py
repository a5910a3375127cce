"""Couche de requêtes sur la base des activités.

Surface consommée par les outils CLI :
- get_last_activity() : dernière activité d'un joueur (sélection de classe + modes)
- get_activity_by_index() : index positionnel (0 = plus récente)
- get_activity() : lookup par identifiant distant
- get_activities_in_window() : performances d'un joueur sur un moment
- get_weapon_stats() : agrégat par arme (DataFrame Polars, top N)
- get_medal_stats() : agrégat par médaille (DataFrame Polars, top N)
- get_roster_rows() : rosters complets (entrée du calcul de rating)

Filtre de modes : une activité correspond si l'un des modes demandés figure
dans activity_mode. Les activités privées sont exclues sauf si un mode privé
est demandé.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

import duckdb
import polars as pl

from crucible_ledger.data.domain.models import (
    ActivityDetail,
    MedalUsage,
    PlayerActivityPerformance,
    TeamSummary,
    WeaponUsage,
)
from crucible_ledger.data.domain.moments import (
    Moment,
    TimeWindow,
    ensure_utc,
    resolve_moment,
)
from crucible_ledger.data.domain.refdata import (
    UNKNOWN_LABEL,
    CharacterClassSelection,
    Mode,
    Standing,
)
from crucible_ledger.data.repositories._arrow_bridge import result_to_polars
from crucible_ledger.data.store.activity_store import connect_store
from crucible_ledger.data.store.schema import ensure_schema
from crucible_ledger.errors import ActivityNotFound, CharacterDoesNotExist, StoreNotFound

logger = logging.getLogger(__name__)

_PERFORMANCE_SELECT = """
    SELECT
        a.activity_id, a.period, a.mode, a.map_name, a.is_private,
        ap.member_id, m.display_name, ap.character_id, ap.class, ap.team,
        ap.standing, ap.completion_reason, ap.completed,
        ap.kills, ap.deaths, ap.assists, ap.score, ap.opponents_defeated,
        ap.precision_kills, ap.ability_kills, ap.grenade_kills,
        ap.melee_kills, ap.super_kills, ap.time_played_seconds,
        ap.activity_duration_seconds, ap.player_count, ap.team_score,
        ap.light_level, ap.all_medals_earned
    FROM activity_player ap
    JOIN activity a ON a.activity_id = ap.activity_id
    LEFT JOIN member m ON m.member_id = ap.member_id
"""

WEAPON_STATS_SCHEMA: dict[str, pl.DataType] = {
    "weapon_hash": pl.Int64,
    "weapon_name": pl.Utf8,
    "weapon_type": pl.Utf8,
    "kills": pl.Int64,
    "precision_kills": pl.Int64,
    "precision_ratio": pl.Float64,
    "activity_count": pl.Int64,
}

MEDAL_STATS_SCHEMA: dict[str, pl.DataType] = {
    "medal_id": pl.Utf8,
    "medal_name": pl.Utf8,
    "count": pl.Int64,
    "activity_count": pl.Int64,
}


def _row_to_performance(row: Sequence[Any]) -> PlayerActivityPerformance:
    return PlayerActivityPerformance(
        activity_id=int(row[0]),
        period=ensure_utc(row[1]),
        mode=int(row[2]),
        map_name=row[3],
        is_private=bool(row[4]),
        member_id=int(row[5]),
        display_name=row[6],
        character_id=int(row[7]),
        class_id=int(row[8] if row[8] is not None else 3),
        team=int(row[9] or 0),
        standing=int(row[10] if row[10] is not None else Standing.UNKNOWN),
        completion_reason=int(row[11] if row[11] is not None else 255),
        completed=bool(row[12]),
        kills=int(row[13] or 0),
        deaths=int(row[14] or 0),
        assists=int(row[15] or 0),
        score=int(row[16] or 0),
        opponents_defeated=int(row[17] or 0),
        precision_kills=int(row[18] or 0),
        ability_kills=int(row[19] or 0),
        grenade_kills=int(row[20] or 0),
        melee_kills=int(row[21] or 0),
        super_kills=int(row[22] or 0),
        time_played_seconds=int(row[23] or 0),
        activity_duration_seconds=int(row[24] or 0),
        player_count=int(row[25] or 0),
        team_score=int(row[26] or 0),
        light_level=int(row[27] or 0),
        all_medals_earned=int(row[28] or 0),
    )


def mode_filter_clause(modes: Iterable[Mode | int] | None, alias: str = "a") -> tuple[str, list[Any]]:
    """Fragment SQL du filtre de modes.

    Returns:
        (condition SQL, paramètres). Condition vide si modes est None.
    """
    if modes is None:
        return "", []
    mode_values = [int(m) for m in modes]
    if not mode_values:
        return "", []
    clause = (
        f"EXISTS (SELECT 1 FROM activity_mode am WHERE am.activity_id = {alias}.activity_id "
        f"AND list_contains(?, am.mode))"
    )
    params: list[Any] = [mode_values]
    if not any(Mode.from_value(m).is_private for m in mode_values):
        clause += (
            f" AND NOT COALESCE({alias}.is_private, FALSE)"
            f" AND NOT EXISTS (SELECT 1 FROM activity_mode ap_m WHERE ap_m.activity_id = {alias}.activity_id"
            f" AND ap_m.mode = ?)"
        )
        params.append(int(Mode.ALL_PRIVATE))
    return clause, params


class ActivityQueries:
    """Requêtes de lecture sur activities.duckdb.

    Args:
        conn: Connexion DuckDB (celle d'un ActivityStore ouvert, ou une
            connexion lecture seule via ActivityQueries.open()).
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self._conn = conn
        self._owns_connection = False

    @classmethod
    def open(cls, db_path: Path | str) -> ActivityQueries:
        """Ouvre la base en lecture seule (schéma vérifié).

        Raises:
            StoreNotFound: Fichier absent (aucune sync lancée).
            SchemaVersionMismatch: Base d'une autre version du schéma.
        """
        path = Path(db_path)
        if not path.exists():
            raise StoreNotFound(str(path))
        conn = connect_store(path, read_only=True)
        try:
            ensure_schema(conn, str(path), read_only=True)
        except Exception:
            conn.close()
            raise
        queries = cls(conn)
        queries._owns_connection = True
        return queries

    def __enter__(self) -> ActivityQueries:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        if self._owns_connection and self._conn is not None:
            self._conn.close()
        self._conn = None  # type: ignore[assignment]

    # =========================================================================
    # Sélection de personnage
    # =========================================================================

    def resolve_characters(
        self,
        member_id: int,
        class_selection: CharacterClassSelection | str = CharacterClassSelection.LAST_ACTIVE,
    ) -> list[int]:
        """Identifiants des personnages correspondant à la sélection.

        Raises:
            CharacterDoesNotExist: Aucun personnage ne correspond.
        """
        selection = CharacterClassSelection(class_selection)
        conn = self._conn

        if selection is CharacterClassSelection.ALL:
            rows = conn.execute(
                """
                SELECT character_id FROM player_character WHERE member_id = ?
                UNION
                SELECT DISTINCT character_id FROM activity_player WHERE member_id = ?
                """,
                [member_id, member_id],
            ).fetchall()
            ids = sorted(int(r[0]) for r in rows)
        elif selection is CharacterClassSelection.LAST_ACTIVE:
            row = conn.execute(
                """
                SELECT c.character_id
                FROM player_character c
                LEFT JOIN (
                    SELECT ap.character_id, max(a.period) AS last_period
                    FROM activity_player ap
                    JOIN activity a ON a.activity_id = ap.activity_id
                    WHERE ap.member_id = ?
                    GROUP BY ap.character_id
                ) s ON s.character_id = c.character_id
                WHERE c.member_id = ?
                ORDER BY COALESCE(c.last_played, s.last_period) DESC NULLS LAST, c.character_id
                LIMIT 1
                """,
                [member_id, member_id],
            ).fetchone()
            ids = [int(row[0])] if row else []
        else:
            row = conn.execute(
                """
                SELECT character_id FROM player_character
                WHERE member_id = ? AND class = ?
                ORDER BY last_played DESC NULLS LAST, character_id
                LIMIT 1
                """,
                [member_id, int(selection.character_class)],
            ).fetchone()
            ids = [int(row[0])] if row else []

        if not ids:
            raise CharacterDoesNotExist(
                f"Aucun personnage '{selection.value}' pour le joueur {member_id}"
            )
        return ids

    # =========================================================================
    # Activités
    # =========================================================================

    def get_activity(self, activity_id: int, member_id: int | None = None) -> ActivityDetail:
        """Activité complète par identifiant distant.

        Raises:
            ActivityNotFound: Identifiant absent de la base.
        """
        conn = self._conn
        row = conn.execute(
            """
            SELECT activity_id, period, mode, platform, reference_hash,
                   director_activity_hash, is_private, map_name, roster_size
            FROM activity WHERE activity_id = ?
            """,
            [activity_id],
        ).fetchone()
        if row is None:
            raise ActivityNotFound(f"Activité {activity_id} introuvable")

        modes = [
            int(r[0])
            for r in conn.execute(
                "SELECT mode FROM activity_mode WHERE activity_id = ? ORDER BY mode", [activity_id]
            ).fetchall()
        ]
        players = self.get_roster_rows([activity_id])

        teams_by_id: dict[int, TeamSummary] = {}
        for team_id, score, standing in conn.execute(
            "SELECT team_id, score, standing FROM team_result WHERE activity_id = ? ORDER BY team_id",
            [activity_id],
        ).fetchall():
            teams_by_id[int(team_id)] = TeamSummary(
                team_id=int(team_id),
                score=score,
                standing=int(standing if standing is not None else Standing.UNKNOWN),
            )
        for p in players:
            team = teams_by_id.get(p.team)
            if team is None:
                team = TeamSummary(team_id=p.team, score=p.team_score, standing=p.standing)
                teams_by_id[p.team] = team
            team.players.append(p)

        weapons: dict[tuple[int, int], list[WeaponUsage]] = {}
        for member, character, weapon_hash, name, type_name, kills, precision in conn.execute(
            """
            SELECT member_id, character_id, weapon_hash, weapon_name, weapon_type,
                   kills, precision_kills
            FROM weapon_stat WHERE activity_id = ?
            ORDER BY kills DESC, weapon_hash
            """,
            [activity_id],
        ).fetchall():
            weapons.setdefault((int(member), int(character)), []).append(
                WeaponUsage(
                    weapon_hash=int(weapon_hash),
                    weapon_name=name,
                    weapon_type=type_name,
                    kills=int(kills or 0),
                    precision_kills=int(precision or 0),
                )
            )

        medals: dict[tuple[int, int], list[MedalUsage]] = {}
        for member, character, medal_id, name, count in conn.execute(
            """
            SELECT member_id, character_id, medal_id, medal_name, count
            FROM medal_stat WHERE activity_id = ?
            ORDER BY count DESC, medal_id
            """,
            [activity_id],
        ).fetchall():
            medals.setdefault((int(member), int(character)), []).append(
                MedalUsage(medal_id=medal_id, medal_name=name, count=int(count or 0))
            )

        player = None
        if member_id is not None:
            player = next((p for p in players if p.member_id == member_id), None)

        return ActivityDetail(
            activity_id=int(row[0]),
            period=ensure_utc(row[1]),
            mode=int(row[2]),
            modes=modes,
            platform=row[3],
            reference_hash=row[4],
            director_activity_hash=row[5],
            is_private=bool(row[6]),
            map_name=row[7],
            roster_size=row[8],
            teams=sorted(teams_by_id.values(), key=lambda t: t.team_id),
            players=players,
            weapons=weapons,
            medals=medals,
            player=player,
        )

    def get_last_activity(
        self,
        member_id: int,
        class_selection: CharacterClassSelection | str = CharacterClassSelection.LAST_ACTIVE,
        modes: Iterable[Mode | int] | None = (Mode.ALL_PVP,),
    ) -> ActivityDetail:
        """Dernière activité du joueur pour la sélection de classe et les modes.

        Raises:
            CharacterDoesNotExist: Aucun personnage pour la sélection.
            ActivityNotFound: Aucune activité correspondante.
        """
        character_ids = self.resolve_characters(member_id, class_selection)
        mode_sql, mode_params = mode_filter_clause(modes)
        sql = """
            SELECT a.activity_id
            FROM activity a
            JOIN activity_player ap ON ap.activity_id = a.activity_id
            WHERE ap.member_id = ? AND list_contains(?, ap.character_id)
        """
        params: list[Any] = [member_id, character_ids]
        if mode_sql:
            sql += f" AND {mode_sql}"
            params.extend(mode_params)
        sql += " ORDER BY a.period DESC, a.activity_id DESC LIMIT 1"

        row = self._conn.execute(sql, params).fetchone()
        if row is None:
            raise ActivityNotFound(f"Aucune activité pour le joueur {member_id}")
        return self.get_activity(int(row[0]), member_id=member_id)

    def get_activity_by_index(
        self,
        index: int,
        member_id: int | None = None,
        modes: Iterable[Mode | int] | None = None,
    ) -> ActivityDetail:
        """Activité par index positionnel (période décroissante, 0 = plus récente).

        Raises:
            ActivityNotFound: Index hors bornes.
        """
        if index < 0:
            raise ActivityNotFound(f"Index {index} invalide")

        sql = "SELECT a.activity_id FROM activity a WHERE TRUE"
        params: list[Any] = []
        if member_id is not None:
            sql += (
                " AND EXISTS (SELECT 1 FROM activity_player ap "
                "WHERE ap.activity_id = a.activity_id AND ap.member_id = ?)"
            )
            params.append(member_id)
        mode_sql, mode_params = mode_filter_clause(modes)
        if mode_sql:
            sql += f" AND {mode_sql}"
            params.extend(mode_params)
        sql += " ORDER BY a.period DESC, a.activity_id DESC LIMIT 1 OFFSET ?"
        params.append(index)

        row = self._conn.execute(sql, params).fetchone()
        if row is None:
            raise ActivityNotFound(f"Aucune activité à l'index {index}")
        return self.get_activity(int(row[0]), member_id=member_id)

    def get_activities_in_window(
        self,
        member_id: int,
        moment: Moment | str | TimeWindow,
        modes: Iterable[Mode | int] | None = (Mode.ALL_PVP,),
        class_selection: CharacterClassSelection | str = CharacterClassSelection.ALL,
        now: datetime | None = None,
    ) -> list[PlayerActivityPerformance]:
        """Performances du joueur dans une fenêtre, plus récentes d'abord.

        Args:
            member_id: Joueur.
            moment: Moment nommé (résolu contre `now`) ou fenêtre explicite.
            modes: Filtre de modes (None = tous).
            class_selection: Sélection de personnage.
            now: Instant de référence, obligatoire pour un moment nommé.
        """
        window = self._to_window(moment, now)
        character_ids = self.resolve_characters(member_id, class_selection)

        sql = (
            _PERFORMANCE_SELECT
            + " WHERE ap.member_id = ? AND list_contains(?, ap.character_id)"
            + " AND a.period >= ? AND a.period < ?"
        )
        params: list[Any] = [member_id, character_ids, window.start_naive, window.end_naive]
        mode_sql, mode_params = mode_filter_clause(modes)
        if mode_sql:
            sql += f" AND {mode_sql}"
            params.extend(mode_params)
        sql += " ORDER BY a.period DESC, a.activity_id DESC"

        return [_row_to_performance(r) for r in self._conn.execute(sql, params).fetchall()]

    def get_roster_rows(self, activity_ids: Iterable[int]) -> list[PlayerActivityPerformance]:
        """Toutes les lignes de roster des activités données (ordre chronologique)."""
        ids = sorted({int(a) for a in activity_ids})
        if not ids:
            return []
        sql = (
            _PERFORMANCE_SELECT
            + " WHERE list_contains(?, ap.activity_id)"
            + " ORDER BY a.period, a.activity_id, ap.team, ap.member_id, ap.character_id"
        )
        return [_row_to_performance(r) for r in self._conn.execute(sql, [ids]).fetchall()]

    # =========================================================================
    # Armes
    # =========================================================================

    def get_weapon_stats(
        self,
        member_id: int | None,
        *,
        activity_id: int | None = None,
        window: Moment | str | TimeWindow | None = None,
        modes: Iterable[Mode | int] | None = (Mode.ALL_PVP,),
        class_selection: CharacterClassSelection | str = CharacterClassSelection.ALL,
        top_n: int | None = 5,
        now: datetime | None = None,
    ) -> pl.DataFrame:
        """Agrégat par arme, trié par frags décroissants.

        Soit `activity_id` (une activité, filtre de modes ignoré), soit
        `window` (moment ou fenêtre, avec modes et sélection de classe).

        Returns:
            DataFrame (weapon_hash, weapon_name, weapon_type, kills,
            precision_kills, precision_ratio, activity_count).
        """
        if (activity_id is None) == (window is None):
            raise ValueError("Préciser soit activity_id, soit window")

        sql = f"""
            SELECT
                w.weapon_hash,
                COALESCE(max(w.weapon_name), '{UNKNOWN_LABEL}') AS weapon_name,
                COALESCE(max(w.weapon_type), '{UNKNOWN_LABEL}') AS weapon_type,
                CAST(SUM(w.kills) AS BIGINT) AS kills,
                CAST(SUM(w.precision_kills) AS BIGINT) AS precision_kills,
                CASE WHEN SUM(w.kills) > 0
                     THEN CAST(SUM(w.precision_kills) AS DOUBLE) / SUM(w.kills)
                     ELSE 0.0 END AS precision_ratio,
                CAST(COUNT(DISTINCT w.activity_id) AS BIGINT) AS activity_count
            FROM weapon_stat w
            JOIN activity a ON a.activity_id = w.activity_id
            WHERE TRUE
        """
        scope_sql, params = self._scope_filter(
            "w", member_id, activity_id, window, modes, class_selection, now
        )
        sql += scope_sql
        sql += " GROUP BY w.weapon_hash ORDER BY SUM(w.kills) DESC, w.weapon_hash"
        if top_n is not None:
            sql += " LIMIT ?"
            params.append(int(top_n))

        return result_to_polars(self._conn.execute(sql, params), schema=WEAPON_STATS_SCHEMA)

    # =========================================================================
    # Médailles
    # =========================================================================

    def get_medal_stats(
        self,
        member_id: int | None,
        *,
        activity_id: int | None = None,
        window: Moment | str | TimeWindow | None = None,
        modes: Iterable[Mode | int] | None = (Mode.ALL_PVP,),
        class_selection: CharacterClassSelection | str = CharacterClassSelection.ALL,
        top_n: int | None = 5,
        now: datetime | None = None,
    ) -> pl.DataFrame:
        """Agrégat par médaille, trié par nombre décroissant.

        Même portée que get_weapon_stats(). Une médaille absente du manifest
        garde son statId avec un nom inconnu.

        Returns:
            DataFrame (medal_id, medal_name, count, activity_count).
        """
        if (activity_id is None) == (window is None):
            raise ValueError("Préciser soit activity_id, soit window")

        sql = f"""
            SELECT
                m.medal_id,
                COALESCE(max(m.medal_name), '{UNKNOWN_LABEL}') AS medal_name,
                CAST(SUM(m.count) AS BIGINT) AS count,
                CAST(COUNT(DISTINCT m.activity_id) AS BIGINT) AS activity_count
            FROM medal_stat m
            JOIN activity a ON a.activity_id = m.activity_id
            WHERE TRUE
        """
        scope_sql, params = self._scope_filter(
            "m", member_id, activity_id, window, modes, class_selection, now
        )
        sql += scope_sql
        sql += " GROUP BY m.medal_id ORDER BY SUM(m.count) DESC, m.medal_id"
        if top_n is not None:
            sql += " LIMIT ?"
            params.append(int(top_n))

        return result_to_polars(self._conn.execute(sql, params), schema=MEDAL_STATS_SCHEMA)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _scope_filter(
        self,
        alias: str,
        member_id: int | None,
        activity_id: int | None,
        window: Moment | str | TimeWindow | None,
        modes: Iterable[Mode | int] | None,
        class_selection: CharacterClassSelection | str,
        now: datetime | None,
    ) -> tuple[str, list[Any]]:
        """Conditions communes aux agrégats par arme et par médaille."""
        sql = ""
        params: list[Any] = []
        if member_id is not None:
            sql += f" AND {alias}.member_id = ?"
            params.append(member_id)

        if activity_id is not None:
            sql += f" AND {alias}.activity_id = ?"
            params.append(activity_id)
            return sql, params

        resolved = self._to_window(window, now)  # type: ignore[arg-type]
        sql += " AND a.period >= ? AND a.period < ?"
        params.extend([resolved.start_naive, resolved.end_naive])
        if member_id is not None:
            character_ids = self.resolve_characters(member_id, class_selection)
            sql += f" AND list_contains(?, {alias}.character_id)"
            params.append(character_ids)
        mode_sql, mode_params = mode_filter_clause(modes)
        if mode_sql:
            sql += f" AND {mode_sql}"
            params.extend(mode_params)
        return sql, params

    @staticmethod
    def _to_window(moment: Moment | str | TimeWindow, now: datetime | None) -> TimeWindow:
        if isinstance(moment, TimeWindow):
            return moment
        if now is None:
            raise ValueError("`now` est requis pour résoudre un moment")
        return resolve_moment(moment, now)
