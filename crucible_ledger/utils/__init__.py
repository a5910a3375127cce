"""Utilitaires partagés pour le projet Crucible Ledger."""

from crucible_ledger.utils.paths import (
    ACTIVITY_DB_FILENAME,
    DATA_DIR,
    MANIFEST_DB_FILENAME,
    REPO_ROOT,
    ensure_data_dir,
    get_activity_db_path,
    get_manifest_db_path,
)

__all__ = [
    "ACTIVITY_DB_FILENAME",
    "DATA_DIR",
    "MANIFEST_DB_FILENAME",
    "REPO_ROOT",
    "ensure_data_dir",
    "get_activity_db_path",
    "get_manifest_db_path",
]
