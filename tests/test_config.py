"""Tests de la configuration (environnement, .env, chemins)."""

from __future__ import annotations

from pathlib import Path

import duckdb

from crucible_ledger.config import LedgerConfig, _load_dotenv_if_present
from crucible_ledger.utils.paths import ensure_data_dir, get_activity_db_path, get_manifest_db_path


class TestPaths:
    """Chemins des bases."""

    def test_db_paths_follow_data_dir(self, ledger_config, tmp_path):
        """Les deux bases sont dans le répertoire de données."""
        assert ledger_config.activity_db_path == tmp_path / "activities.duckdb"
        assert ledger_config.manifest_db_path == tmp_path / "manifest.duckdb"

    def test_helpers_accept_strings(self, tmp_path):
        """Les helpers de chemin acceptent des chaînes."""
        assert get_activity_db_path(str(tmp_path)) == tmp_path / "activities.duckdb"
        assert get_manifest_db_path(tmp_path).name == "manifest.duckdb"

    def test_ensure_data_dir(self, tmp_path):
        """Le répertoire de données est créé avec ses parents."""
        target = tmp_path / "nested" / "data"
        assert ensure_data_dir(target) == target
        assert target.is_dir()


class TestEnvironment:
    """Overrides par variables d'environnement."""

    def test_env_overrides(self, ledger_config, monkeypatch, tmp_path):
        """Les variables d'environnement remplacent les valeurs par défaut."""
        monkeypatch.setenv("CRUCIBLE_LEDGER_DATA_DIR", str(tmp_path / "env"))
        monkeypatch.setenv("CRUCIBLE_LEDGER_API_KEY", "from-env")
        monkeypatch.setenv("CRUCIBLE_LEDGER_DUCKDB_MEMORY_LIMIT", "1GB")
        monkeypatch.setenv("CRUCIBLE_LEDGER_DUCKDB_THREADS", "2")
        monkeypatch.setenv("CRUCIBLE_LEDGER_TIMEOUT", "10")

        config = LedgerConfig(load_dotenv=False)

        assert config.data_dir == tmp_path / "env"
        assert config.api_key == "from-env"
        assert config.memory_limit == "1GB"
        assert config.threads == 2
        assert config.request_timeout_seconds == 10.0

    def test_explicit_api_key_wins(self, ledger_config, monkeypatch):
        """Une clé API explicite l'emporte sur l'environnement."""
        monkeypatch.setenv("CRUCIBLE_LEDGER_API_KEY", "from-env")

        assert LedgerConfig(api_key="explicit", load_dotenv=False).api_key == "explicit"

    def test_bungie_api_key_fallback(self, ledger_config, monkeypatch):
        """BUNGIE_API_KEY sert de repli."""
        monkeypatch.setenv("BUNGIE_API_KEY", "legacy")

        assert LedgerConfig(load_dotenv=False).api_key == "legacy"

    def test_invalid_numbers_are_ignored(self, ledger_config, monkeypatch):
        """Des nombres invalides dans l'environnement sont ignorés."""
        monkeypatch.setenv("CRUCIBLE_LEDGER_DUCKDB_THREADS", "beaucoup")
        monkeypatch.setenv("CRUCIBLE_LEDGER_TIMEOUT", "vite")

        config = LedgerConfig(load_dotenv=False)

        assert config.threads is None
        assert config.request_timeout_seconds == 45.0


class TestDotenv:
    """Chargement des fichiers .env."""

    def test_does_not_override_existing(self, ledger_config, monkeypatch, tmp_path):
        """Le fichier .env ne remplace pas une variable déjà définie."""
        (tmp_path / ".env").write_text(
            "# commentaire\nCRUCIBLE_LEDGER_API_KEY='dotenv'\nCRUCIBLE_LEDGER_DUCKDB_MEMORY_LIMIT=2GB\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("CRUCIBLE_LEDGER_DUCKDB_MEMORY_LIMIT", "256MB")
        # La variable chargée depuis .env sera retirée au teardown
        monkeypatch.setenv("CRUCIBLE_LEDGER_API_KEY", "placeholder")
        monkeypatch.delenv("CRUCIBLE_LEDGER_API_KEY")

        _load_dotenv_if_present(tmp_path)
        config = LedgerConfig(load_dotenv=False)

        assert config.api_key == "dotenv"
        assert config.memory_limit == "256MB"


class TestApply:
    """Application à une connexion DuckDB."""

    def test_apply_sets_threads(self, ledger_config):
        """Les réglages DuckDB sont appliqués à la connexion."""
        ledger_config.threads = 1
        conn = duckdb.connect()
        try:
            ledger_config.apply(conn)
            assert conn.execute("SELECT current_setting('threads')").fetchone()[0] == 1
        finally:
            conn.close()

    def test_data_dir_is_path(self, ledger_config, tmp_path):
        """Le répertoire de données est converti en Path."""
        config = LedgerConfig(data_dir=str(tmp_path), load_dotenv=False)
        assert isinstance(config.data_dir, Path)
