"""Configuration centralisée de Crucible Ledger.

Les valeurs par défaut sont surchargées par l'environnement (puis par les
arguments CLI). Les fichiers .env.local et .env à la racine du projet sont
chargés s'ils existent, sans jamais écraser une variable déjà définie.

Usage:
    from crucible_ledger.config import LedgerConfig

    config = LedgerConfig()
    with duckdb.connect(str(config.activity_db_path)) as conn:
        config.apply(conn)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from crucible_ledger.utils.paths import DATA_DIR, REPO_ROOT, get_activity_db_path, get_manifest_db_path

if TYPE_CHECKING:
    import duckdb

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration par défaut
# =============================================================================

# Limite mémoire DuckDB par défaut
DEFAULT_MEMORY_LIMIT = "512MB"

# Nombre de threads (None = auto-détection par DuckDB)
DEFAULT_THREADS = None

# Timeout total d'une requête HTTP (secondes)
DEFAULT_REQUEST_TIMEOUT = 45.0


# =============================================================================
# Chargement .env
# =============================================================================


def _load_dotenv_if_present(root: Path | None = None) -> None:
    """Charge les fichiers .env.local et .env si présents."""
    repo_root = root or REPO_ROOT

    for name in (".env.local", ".env"):
        dotenv_path = repo_root / name
        if not dotenv_path.exists():
            continue
        try:
            content = dotenv_path.read_text(encoding="utf-8")
        except OSError as e:
            logger.debug(f"Lecture {dotenv_path} impossible: {e}")
            continue

        for raw_line in content.splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if not key:
                continue
            if os.environ.get(key) is None:
                os.environ[key] = value


# =============================================================================
# Lecture de l'environnement
# =============================================================================


def _get_env_threads() -> int | None:
    """Lit le nombre de threads depuis l'environnement."""
    val = os.environ.get("CRUCIBLE_LEDGER_DUCKDB_THREADS")
    if val:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"CRUCIBLE_LEDGER_DUCKDB_THREADS invalide: {val!r}")
    return None


def _get_env_timeout() -> float | None:
    """Lit le timeout HTTP depuis l'environnement."""
    val = os.environ.get("CRUCIBLE_LEDGER_TIMEOUT")
    if val:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"CRUCIBLE_LEDGER_TIMEOUT invalide: {val!r}")
    return None


# =============================================================================
# Classe de configuration
# =============================================================================


@dataclass
class LedgerConfig:
    """Configuration de l'application.

    Attributes:
        data_dir: Dossier contenant activities.duckdb et manifest.duckdb.
        api_key: Clé API Bungie (header X-API-Key).
        memory_limit: Limite mémoire DuckDB (ex: "512MB", "1GB").
        threads: Nombre de threads DuckDB (None = auto).
        request_timeout_seconds: Timeout total d'une requête HTTP.
        load_dotenv: Charger .env.local / .env avant de lire l'environnement.
    """

    data_dir: Path = field(default_factory=lambda: DATA_DIR)
    api_key: str | None = None
    memory_limit: str = DEFAULT_MEMORY_LIMIT
    threads: int | None = DEFAULT_THREADS
    request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT
    load_dotenv: bool = True

    def __post_init__(self) -> None:
        """Applique les overrides depuis l'environnement."""
        if self.load_dotenv:
            _load_dotenv_if_present()

        if env_dir := os.environ.get("CRUCIBLE_LEDGER_DATA_DIR"):
            self.data_dir = Path(env_dir)
        self.data_dir = Path(self.data_dir)

        if self.api_key is None:
            self.api_key = os.environ.get("CRUCIBLE_LEDGER_API_KEY") or os.environ.get("BUNGIE_API_KEY")

        if env_memory := os.environ.get("CRUCIBLE_LEDGER_DUCKDB_MEMORY_LIMIT"):
            self.memory_limit = env_memory
        if env_threads := _get_env_threads():
            self.threads = env_threads
        if env_timeout := _get_env_timeout():
            self.request_timeout_seconds = env_timeout

    @property
    def activity_db_path(self) -> Path:
        return get_activity_db_path(self.data_dir)

    @property
    def manifest_db_path(self) -> Path:
        return get_manifest_db_path(self.data_dir)

    def apply(self, conn: duckdb.DuckDBPyConnection) -> None:
        """Applique la configuration à une connexion DuckDB.

        Args:
            conn: Connexion DuckDB ouverte.
        """
        conn.execute(f"SET memory_limit = '{self.memory_limit}'")
        if self.threads is not None:
            conn.execute(f"SET threads = {self.threads}")
        conn.execute("SET enable_progress_bar = false")
