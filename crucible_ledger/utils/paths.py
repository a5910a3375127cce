"""Gestion centralisée des chemins pour le projet Crucible Ledger.

Ce module définit tous les chemins utilisés :
- data/activities.duckdb : Base des activités (tous les joueurs suivis)
- data/manifest.duckdb : Référentiel local (manifest)
"""

from __future__ import annotations

import os
from pathlib import Path

# =============================================================================
# Chemins racine
# =============================================================================


def _find_repo_root() -> Path:
    """Trouve la racine du projet (contient pyproject.toml ou .git)."""
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / "pyproject.toml").exists() or (parent / ".git").exists():
            return parent

    # Fallback : variable d'environnement ou CWD
    if env_root := os.environ.get("CRUCIBLE_LEDGER_ROOT"):
        return Path(env_root)

    return Path.cwd()


# Racine du projet
REPO_ROOT: Path = _find_repo_root()

# Dossier des données par défaut
DATA_DIR: Path = REPO_ROOT / "data"


# =============================================================================
# Constantes de noms de fichiers
# =============================================================================

# Base DuckDB des activités
ACTIVITY_DB_FILENAME = "activities.duckdb"

# Base DuckDB du manifest
MANIFEST_DB_FILENAME = "manifest.duckdb"


# =============================================================================
# Fonctions utilitaires
# =============================================================================


def get_activity_db_path(data_dir: Path | str | None = None) -> Path:
    """Retourne le chemin vers la base des activités.

    Args:
        data_dir: Dossier des données (DATA_DIR si None).
    """
    return Path(data_dir or DATA_DIR) / ACTIVITY_DB_FILENAME


def get_manifest_db_path(data_dir: Path | str | None = None) -> Path:
    """Retourne le chemin vers la base du manifest.

    Args:
        data_dir: Dossier des données (DATA_DIR si None).
    """
    return Path(data_dir or DATA_DIR) / MANIFEST_DB_FILENAME


def ensure_data_dir(data_dir: Path | str | None = None) -> Path:
    """Crée le dossier des données si nécessaire.

    Returns:
        Chemin vers le dossier créé.
    """
    path = Path(data_dir or DATA_DIR)
    path.mkdir(parents=True, exist_ok=True)
    return path
