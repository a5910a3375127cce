"""Référentiel local (manifest) : construction, validation, swap atomique, lookups.

Le manifest distant (tables de définitions JSON) est converti en une base
DuckDB (manifest.duckdb) contenant uniquement les tables utiles :
- inventory_items : armes et objets (nom, type)
- activities : cartes / activités (nom)
- activity_modes : modes (nom, modeType)
- medals : médailles (DestinyHistoricalStatsDefinition, clé statId)

Mise à jour : la nouvelle base est construite dans un fichier temporaire à
côté de la base active, validée, puis remplacée via os.replace. Un lecteur
voit soit l'ancien manifest complet, soit le nouveau, jamais un mélange.

Usage:
    with ManifestStore("data/manifest.duckdb") as manifest:
        updated = await manifest.ensure_current(client)
        entry = manifest.resolve(1363886209, ReferenceKind.ITEM)
        medal = manifest.resolve_medal("medalStreak10x")
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import duckdb
import polars as pl

from crucible_ledger.errors import ManifestError

if TYPE_CHECKING:
    from crucible_ledger.data.sync.api_client import ActivityApi

logger = logging.getLogger(__name__)

# Version du schéma de la base manifest (différence => manifest considéré périmé)
MANIFEST_SCHEMA_VERSION = 2


class ReferenceKind(str, Enum):
    """Types de références résolues via le manifest."""

    ITEM = "item"
    ACTIVITY = "activity"
    ACTIVITY_MODE = "activity_mode"


@dataclass(frozen=True)
class _KindTable:
    table: str
    definition: str


KIND_TABLES: dict[ReferenceKind, _KindTable] = {
    ReferenceKind.ITEM: _KindTable("inventory_items", "DestinyInventoryItemDefinition"),
    ReferenceKind.ACTIVITY: _KindTable("activities", "DestinyActivityDefinition"),
    ReferenceKind.ACTIVITY_MODE: _KindTable("activity_modes", "DestinyActivityModeDefinition"),
}

# Médailles : clé statId (chaîne), pas de hash
MEDAL_DEFINITION = "DestinyHistoricalStatsDefinition"
MEDAL_REFERENCE = "medal"

MANIFEST_DDL = """
CREATE TABLE manifest_info (
    key VARCHAR PRIMARY KEY,
    value VARCHAR
);

CREATE TABLE inventory_items (
    hash BIGINT PRIMARY KEY,
    name VARCHAR,
    description VARCHAR,
    type_name VARCHAR,
    icon VARCHAR
);

CREATE TABLE activities (
    hash BIGINT PRIMARY KEY,
    name VARCHAR,
    description VARCHAR,
    type_name VARCHAR,
    icon VARCHAR
);

CREATE TABLE activity_modes (
    hash BIGINT PRIMARY KEY,
    name VARCHAR,
    description VARCHAR,
    type_name VARCHAR,
    icon VARCHAR
);

CREATE TABLE medals (
    stat_id VARCHAR PRIMARY KEY,
    name VARCHAR,
    description VARCHAR,
    icon VARCHAR,
    weight INTEGER,
    tier_hash BIGINT
)
"""

_ROW_SCHEMA = {
    "hash": pl.Int64,
    "name": pl.Utf8,
    "description": pl.Utf8,
    "type_name": pl.Utf8,
    "icon": pl.Utf8,
}

_MEDAL_SCHEMA = {
    "stat_id": pl.Utf8,
    "name": pl.Utf8,
    "description": pl.Utf8,
    "icon": pl.Utf8,
    "weight": pl.Int64,
    "tier_hash": pl.Int64,
}


@dataclass(frozen=True)
class ReferenceEntry:
    """Définition résolue depuis le manifest."""

    kind: ReferenceKind
    hash: int
    name: str | None
    description: str | None = None
    type_name: str | None = None
    icon: str | None = None


@dataclass(frozen=True)
class MedalDefinition:
    """Médaille résolue depuis le manifest."""

    stat_id: str
    name: str | None
    description: str | None = None
    icon: str | None = None
    weight: int | None = None
    tier_hash: int | None = None


# =============================================================================
# Conversion du contenu distant
# =============================================================================


def _definition_rows(kind: ReferenceKind, definitions: dict[str, Any]) -> pl.DataFrame:
    """Convertit une table de définitions JSON en DataFrame de lignes."""
    rows: list[dict[str, Any]] = []
    for key, definition in (definitions or {}).items():
        if not isinstance(definition, dict):
            continue
        try:
            hash_value = int(definition.get("hash", key))
        except (TypeError, ValueError):
            continue
        display = definition.get("displayProperties") or {}
        if kind is ReferenceKind.ITEM:
            type_name = definition.get("itemTypeDisplayName")
        elif kind is ReferenceKind.ACTIVITY_MODE:
            mode_type = definition.get("modeType")
            type_name = str(mode_type) if mode_type is not None else None
        else:
            type_name = None
        rows.append(
            {
                "hash": hash_value,
                "name": display.get("name") or None,
                "description": display.get("description") or None,
                "type_name": type_name or None,
                "icon": display.get("icon") or definition.get("pgcrImage"),
            }
        )
    return pl.DataFrame(rows, schema=_ROW_SCHEMA)


def _medal_rows(definitions: dict[str, Any]) -> pl.DataFrame:
    rows: list[dict[str, Any]] = []
    for key, definition in (definitions or {}).items():
        if not isinstance(definition, dict):
            continue
        weight = definition.get("weight")
        tier_hash = definition.get("medalTierHash")
        rows.append(
            {
                "stat_id": str(definition.get("statId") or key),
                "name": definition.get("statName") or None,
                "description": definition.get("statDescription") or None,
                "icon": definition.get("iconImage") or None,
                "weight": int(weight) if weight is not None else None,
                "tier_hash": int(tier_hash) if tier_hash is not None else None,
            }
        )
    return pl.DataFrame(rows, schema=_MEDAL_SCHEMA)


def build_manifest_db(path: Path, version: str, blob: dict[str, Any]) -> dict[str, int]:
    """Construit une base manifest complète dans `path` (écrasée).

    Returns:
        Nombre de lignes par table.
    """
    for stale in (path, path.with_name(path.name + ".wal")):
        if stale.exists():
            stale.unlink()

    counts: dict[str, int] = {}
    conn = duckdb.connect(str(path))
    try:
        for stmt in MANIFEST_DDL.split(";"):
            stmt = stmt.strip()
            if stmt:
                conn.execute(stmt)

        for kind, info in KIND_TABLES.items():
            df = _definition_rows(kind, blob.get(info.definition) or {})
            # doublons de hash possibles dans un blob mal formé
            df = df.unique(subset=["hash"], keep="first")
            conn.register("definition_rows", df.to_arrow())
            conn.execute(
                f"INSERT INTO {info.table} SELECT hash, name, description, type_name, icon "
                f"FROM definition_rows"
            )
            conn.unregister("definition_rows")
            counts[info.table] = df.height

        medals = _medal_rows(blob.get(MEDAL_DEFINITION) or {}).unique(subset=["stat_id"], keep="first")
        conn.register("medal_rows", medals.to_arrow())
        conn.execute(
            "INSERT INTO medals SELECT stat_id, name, description, icon, weight, tier_hash FROM medal_rows"
        )
        conn.unregister("medal_rows")
        counts["medals"] = medals.height

        conn.executemany(
            "INSERT INTO manifest_info (key, value) VALUES (?, ?)",
            [
                ["version", version],
                ["schema_version", str(MANIFEST_SCHEMA_VERSION)],
                ["created_at", datetime.now(timezone.utc).isoformat()],
            ],
        )
    finally:
        conn.close()
    return counts


def validate_manifest_db(path: Path, expected_version: str) -> None:
    """Vérifie une base manifest fraîchement construite.

    Raises:
        ManifestError: Version absente / différente ou table requise vide.
    """
    conn = duckdb.connect(str(path), read_only=True)
    try:
        row = conn.execute("SELECT value FROM manifest_info WHERE key = 'version'").fetchone()
        if not row or row[0] != expected_version:
            raise ManifestError(
                f"Version du manifest construit invalide: {row[0] if row else None} != {expected_version}"
            )
        for info in KIND_TABLES.values():
            count = conn.execute(f"SELECT COUNT(*) FROM {info.table}").fetchone()[0]
            if count == 0:
                raise ManifestError(f"Table {info.table} vide dans le manifest {expected_version}")
    finally:
        conn.close()


# =============================================================================
# Store
# =============================================================================


class ManifestStore:
    """Gestionnaire du manifest local.

    Les lookups sont mis en cache par (kind, hash), les médailles par statId ;
    les caches sont vidés après chaque swap.
    """

    def __init__(self, manifest_db_path: Path | str) -> None:
        self.manifest_db_path = Path(manifest_db_path)
        self._conn: duckdb.DuckDBPyConnection | None = None
        self._cache: dict[tuple[ReferenceKind, int], ReferenceEntry | None] = {}
        self._medal_cache: dict[str, MedalDefinition | None] = {}

    def __enter__(self) -> ManifestStore:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection | None:
        """Connexion lecture seule (None si le manifest n'existe pas)."""
        if self._conn is None:
            if not self.manifest_db_path.exists():
                return None
            self._conn = duckdb.connect(str(self.manifest_db_path), read_only=True)
        return self._conn

    def _read_info(self, key: str) -> str | None:
        conn = self._get_connection()
        if conn is None:
            return None
        try:
            row = conn.execute("SELECT value FROM manifest_info WHERE key = ?", [key]).fetchone()
        except duckdb.Error as e:
            logger.warning(f"manifest_info illisible dans {self.manifest_db_path}: {e}")
            return None
        return row[0] if row else None

    @property
    def version(self) -> str | None:
        """Version du manifest local (None si absent ou schéma incompatible)."""
        schema_version = self._read_info("schema_version")
        if schema_version != str(MANIFEST_SCHEMA_VERSION):
            if schema_version is not None:
                logger.info(
                    f"Schéma manifest v{schema_version} != v{MANIFEST_SCHEMA_VERSION}, à reconstruire"
                )
            return None
        return self._read_info("version")

    @property
    def is_available(self) -> bool:
        return self.version is not None

    # =========================================================================
    # Mise à jour
    # =========================================================================

    async def ensure_current(self, client: ActivityApi) -> bool:
        """Met à jour le manifest local si la version distante diffère.

        Returns:
            True si un nouveau manifest a été installé.

        Raises:
            TransportError: Erreur de l'API (manifest local inchangé).
            ManifestError: Le manifest téléchargé n'a pas passé la validation.
        """
        remote = await client.fetch_manifest_version()
        local = self.version
        if local == remote.version:
            logger.debug(f"Manifest à jour ({local})")
            return False

        logger.info(f"Manifest local {local} -> distant {remote.version}")
        blob = await client.fetch_manifest_blob(remote)
        self.install(remote.version, blob)
        return True

    def install(self, version: str, blob: dict[str, Any]) -> None:
        """Construit, valide puis installe atomiquement un manifest.

        Raises:
            ManifestError: Validation échouée (le manifest actif est conservé).
        """
        self.manifest_db_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.manifest_db_path.with_name(self.manifest_db_path.name + ".tmp")
        try:
            counts = build_manifest_db(tmp_path, version, blob)
            validate_manifest_db(tmp_path, version)
        except Exception:
            for leftover in (tmp_path, tmp_path.with_name(tmp_path.name + ".wal")):
                if leftover.exists():
                    leftover.unlink()
            raise

        self.close()
        os.replace(tmp_path, self.manifest_db_path)
        self._cache.clear()
        self._medal_cache.clear()
        logger.info(
            f"Manifest {version} installé: "
            + ", ".join(f"{table}={n}" for table, n in counts.items())
        )

    # =========================================================================
    # Lookups
    # =========================================================================

    def resolve(self, hash_value: int | None, kind: ReferenceKind | str) -> ReferenceEntry | None:
        """Résout un hash. Hash inconnu (ou manifest absent) => None."""
        if hash_value is None:
            return None
        kind = ReferenceKind(kind)
        key = (kind, int(hash_value))
        if key in self._cache:
            return self._cache[key]

        conn = self._get_connection()
        if conn is None:
            return None
        info = KIND_TABLES[kind]
        row = conn.execute(
            f"SELECT hash, name, description, type_name, icon FROM {info.table} WHERE hash = ?",
            [int(hash_value)],
        ).fetchone()
        entry = None
        if row:
            entry = ReferenceEntry(
                kind=kind,
                hash=int(row[0]),
                name=row[1],
                description=row[2],
                type_name=row[3],
                icon=row[4],
            )
        self._cache[key] = entry
        return entry

    def resolve_name(self, hash_value: int | None, kind: ReferenceKind | str) -> str | None:
        entry = self.resolve(hash_value, kind)
        return entry.name if entry else None

    def find(self, hash_value: int) -> list[ReferenceEntry]:
        """Cherche un hash dans toutes les tables de définitions."""
        results = []
        for kind in KIND_TABLES:
            entry = self.resolve(hash_value, kind)
            if entry is not None:
                results.append(entry)
        return results

    def resolve_medal(self, stat_id: str | None) -> MedalDefinition | None:
        """Résout une médaille par statId. Médaille inconnue (ou manifest absent) => None."""
        if not stat_id:
            return None
        if stat_id in self._medal_cache:
            return self._medal_cache[stat_id]

        conn = self._get_connection()
        if conn is None:
            return None
        row = conn.execute(
            "SELECT stat_id, name, description, icon, weight, tier_hash FROM medals WHERE stat_id = ?",
            [stat_id],
        ).fetchone()
        medal = None
        if row:
            medal = MedalDefinition(
                stat_id=row[0],
                name=row[1],
                description=row[2],
                icon=row[3],
                weight=row[4],
                tier_hash=row[5],
            )
        self._medal_cache[stat_id] = medal
        return medal
