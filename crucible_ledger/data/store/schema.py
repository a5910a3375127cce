"""Schéma DuckDB de la base des activités (activities.duckdb).

Tables :
- store_meta : clé/valeur (schema_version)
- member / player_character : joueurs suivis ou croisés, personnages
- activity / activity_mode / team_result : une activité et ses métadonnées
- activity_player : roster complet (une ligne par joueur/personnage)
- weapon_stat : stats par arme, rattachées à une ligne activity_player
- medal_stat : médailles obtenues, rattachées à une ligne activity_player
- sync_frontier : dernière activité committée par (joueur, personnage, mode)
- pending_activity : activités listées dont le PGCR n'a pas pu être récupéré

Les timestamps sont stockés en UTC naïf (TIMESTAMP).

Pas de migration : la version de schéma est comparée à l'ouverture et une
différence impose une ré-acquisition complète.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from crucible_ledger.errors import SchemaVersionMismatch

if TYPE_CHECKING:
    import duckdb

logger = logging.getLogger(__name__)

# Version du schéma de la base des activités
SCHEMA_VERSION = 2

SCHEMA_VERSION_KEY = "schema_version"

ACTIVITY_SCHEMA_DDL = """
CREATE TABLE IF NOT EXISTS store_meta (
    key VARCHAR PRIMARY KEY,
    value VARCHAR
);

CREATE TABLE IF NOT EXISTS member (
    member_id BIGINT PRIMARY KEY,
    platform INTEGER,
    display_name VARCHAR,
    updated_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS player_character (
    character_id BIGINT PRIMARY KEY,
    member_id BIGINT NOT NULL,
    class INTEGER NOT NULL,
    last_played TIMESTAMP
);

CREATE TABLE IF NOT EXISTS activity (
    activity_id BIGINT PRIMARY KEY,
    period TIMESTAMP NOT NULL,
    mode INTEGER NOT NULL,
    platform INTEGER,
    reference_hash BIGINT,
    director_activity_hash BIGINT,
    is_private BOOLEAN DEFAULT FALSE,
    map_name VARCHAR,
    roster_size INTEGER,
    created_at TIMESTAMP
);

CREATE TABLE IF NOT EXISTS activity_mode (
    activity_id BIGINT NOT NULL,
    mode INTEGER NOT NULL,
    PRIMARY KEY (activity_id, mode)
);

CREATE TABLE IF NOT EXISTS team_result (
    activity_id BIGINT NOT NULL,
    team_id INTEGER NOT NULL,
    score INTEGER,
    standing INTEGER,
    PRIMARY KEY (activity_id, team_id)
);

CREATE TABLE IF NOT EXISTS activity_player (
    activity_id BIGINT NOT NULL,
    member_id BIGINT NOT NULL,
    character_id BIGINT NOT NULL,
    class INTEGER,
    light_level INTEGER,
    team INTEGER,
    standing INTEGER,
    completion_reason INTEGER,
    completed BOOLEAN,
    kills INTEGER,
    deaths INTEGER,
    assists INTEGER,
    score INTEGER,
    opponents_defeated INTEGER,
    precision_kills INTEGER,
    ability_kills INTEGER,
    grenade_kills INTEGER,
    melee_kills INTEGER,
    super_kills INTEGER,
    time_played_seconds INTEGER,
    activity_duration_seconds INTEGER,
    start_seconds INTEGER,
    player_count INTEGER,
    team_score INTEGER,
    all_medals_earned INTEGER,
    PRIMARY KEY (activity_id, member_id, character_id)
);

CREATE TABLE IF NOT EXISTS weapon_stat (
    activity_id BIGINT NOT NULL,
    member_id BIGINT NOT NULL,
    character_id BIGINT NOT NULL,
    weapon_hash BIGINT NOT NULL,
    kills INTEGER,
    precision_kills INTEGER,
    weapon_name VARCHAR,
    weapon_type VARCHAR,
    PRIMARY KEY (activity_id, member_id, character_id, weapon_hash)
);

CREATE TABLE IF NOT EXISTS medal_stat (
    activity_id BIGINT NOT NULL,
    member_id BIGINT NOT NULL,
    character_id BIGINT NOT NULL,
    medal_id VARCHAR NOT NULL,
    count INTEGER NOT NULL,
    medal_name VARCHAR,
    PRIMARY KEY (activity_id, member_id, character_id, medal_id)
);

CREATE TABLE IF NOT EXISTS sync_frontier (
    member_id BIGINT NOT NULL,
    character_id BIGINT NOT NULL,
    mode INTEGER NOT NULL,
    last_activity_id BIGINT NOT NULL,
    last_period TIMESTAMP NOT NULL,
    updated_at TIMESTAMP,
    PRIMARY KEY (member_id, character_id, mode)
);

CREATE TABLE IF NOT EXISTS pending_activity (
    activity_id BIGINT NOT NULL,
    member_id BIGINT NOT NULL,
    character_id BIGINT NOT NULL,
    mode INTEGER,
    period TIMESTAMP,
    reason VARCHAR,
    attempts INTEGER DEFAULT 1,
    first_seen TIMESTAMP,
    last_attempt TIMESTAMP,
    PRIMARY KEY (activity_id, member_id, character_id)
)
"""

# Tables supprimées par une ré-acquisition complète (ordre indifférent, pas de FK)
ACTIVITY_TABLES: tuple[str, ...] = (
    "medal_stat",
    "weapon_stat",
    "activity_player",
    "team_result",
    "activity_mode",
    "activity",
    "player_character",
    "member",
    "sync_frontier",
    "pending_activity",
    "store_meta",
)


# =============================================================================
# Helpers
# =============================================================================


def table_exists(conn: duckdb.DuckDBPyConnection, table_name: str) -> bool:
    """Vérifie si une table existe dans le schéma main."""
    result = conn.execute(
        "SELECT COUNT(*) FROM information_schema.tables "
        "WHERE table_schema = 'main' AND table_name = ?",
        [table_name],
    ).fetchone()
    return bool(result and result[0] > 0)


def list_tables(conn: duckdb.DuckDBPyConnection) -> set[str]:
    rows = conn.execute(
        "SELECT table_name FROM information_schema.tables WHERE table_schema = 'main'"
    ).fetchall()
    return {r[0] for r in rows}


def read_schema_version(conn: duckdb.DuckDBPyConnection) -> int | None:
    """Lit la version de schéma stockée (None si absente ou illisible)."""
    if not table_exists(conn, "store_meta"):
        return None
    row = conn.execute(
        "SELECT value FROM store_meta WHERE key = ?", [SCHEMA_VERSION_KEY]
    ).fetchone()
    if not row:
        return None
    try:
        return int(row[0])
    except (TypeError, ValueError):
        return None


def apply_ddl(conn: duckdb.DuckDBPyConnection, ddl: str) -> None:
    for stmt in ddl.split(";"):
        stmt = stmt.strip()
        if stmt:
            conn.execute(stmt)


def ensure_schema(conn: duckdb.DuckDBPyConnection, path: str, *, read_only: bool = False) -> None:
    """Crée le schéma d'une base vide ou vérifie la version d'une base existante.

    Args:
        conn: Connexion DuckDB.
        path: Chemin (pour les messages d'erreur).
        read_only: Connexion en lecture seule (pas de création).

    Raises:
        SchemaVersionMismatch: Base existante d'une autre version.
    """
    existing = list_tables(conn)
    if existing:
        found = read_schema_version(conn)
        if found != SCHEMA_VERSION:
            raise SchemaVersionMismatch(path, found, SCHEMA_VERSION)
        return

    if read_only:
        raise SchemaVersionMismatch(path, None, SCHEMA_VERSION)

    logger.info(f"Création du schéma v{SCHEMA_VERSION} dans {path}")
    # Tables et version ensemble : une création interrompue ne laisse pas de
    # base sans version
    conn.execute("BEGIN TRANSACTION")
    try:
        apply_ddl(conn, ACTIVITY_SCHEMA_DDL)
        conn.execute(
            "INSERT OR REPLACE INTO store_meta (key, value) VALUES (?, ?)",
            [SCHEMA_VERSION_KEY, str(SCHEMA_VERSION)],
        )
        conn.execute("COMMIT")
    except Exception:
        conn.execute("ROLLBACK")
        raise


def drop_schema(conn: duckdb.DuckDBPyConnection) -> None:
    """Supprime toutes les tables connues (ré-acquisition complète)."""
    for table in ACTIVITY_TABLES:
        conn.execute(f"DROP TABLE IF EXISTS {table}")
    # Tables d'une autre version du schéma
    for table in list_tables(conn):
        conn.execute(f'DROP TABLE IF EXISTS "{table}"')
