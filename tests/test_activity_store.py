"""Tests de la base des activités (schéma, écriture atomique, file d'attente)."""

from __future__ import annotations

from datetime import timedelta

import duckdb
import pytest

from crucible_ledger.data.store import activity_store as activity_store_module
from crucible_ledger.data.store import schema as schema_module
from crucible_ledger.data.store.activity_store import ActivityStore, connect_store
from crucible_ledger.data.store.schema import SCHEMA_VERSION, list_tables, read_schema_version
from crucible_ledger.data.sync.transformers import transform_report
from crucible_ledger.errors import SchemaVersionMismatch, StoreBusyError
from tests.conftest import (
    BASE_PERIOD,
    CHARACTER_A_HUNTER,
    MAP_HASH,
    MEDAL_DOUBLE,
    MEDAL_UNKNOWN,
    MEMBER_A,
    WEAPON_GJALLARHORN,
    make_report,
)

# =============================================================================
# Schéma
# =============================================================================


class TestSchemaVersion:
    """Version de schéma vérifiée à l'ouverture, sans migration."""

    def test_new_store_records_version(self, activity_store):
        """Une base neuve enregistre la version de schéma courante."""
        assert read_schema_version(activity_store.connection) == SCHEMA_VERSION

    def test_reopen_same_version(self, activity_store, ledger_config):
        """La réouverture d'une base à jour ne touche pas au contenu."""
        activity_store.connection  # noqa: B018
        activity_store.close()
        with ActivityStore(ledger_config.activity_db_path, config=ledger_config) as store:
            assert store.counts()["activity"] == 0

    def test_other_version_raises(self, ledger_config):
        """Une base d'une autre version lève SchemaVersionMismatch avec les deux versions."""
        path = ledger_config.activity_db_path
        conn = duckdb.connect(str(path))
        conn.execute("CREATE TABLE store_meta (key VARCHAR PRIMARY KEY, value VARCHAR)")
        conn.execute("INSERT INTO store_meta VALUES ('schema_version', '99')")
        conn.close()

        store = ActivityStore(path, config=ledger_config)
        with pytest.raises(SchemaVersionMismatch) as exc_info:
            store.connection  # noqa: B018
        assert exc_info.value.found == 99
        assert exc_info.value.expected == SCHEMA_VERSION

    def test_unversioned_database_raises(self, ledger_config):
        """Une base existante sans version est refusée."""
        path = ledger_config.activity_db_path
        conn = duckdb.connect(str(path))
        conn.execute("CREATE TABLE activities (id BIGINT)")
        conn.close()

        with pytest.raises(SchemaVersionMismatch):
            ActivityStore(path, config=ledger_config).connection  # noqa: B018

    def test_reset_recovers_from_mismatch(self, ledger_config):
        """La réinitialisation recrée un schéma vide à la bonne version."""
        path = ledger_config.activity_db_path
        conn = duckdb.connect(str(path))
        conn.execute("CREATE TABLE store_meta (key VARCHAR PRIMARY KEY, value VARCHAR)")
        conn.execute("INSERT INTO store_meta VALUES ('schema_version', '0')")
        conn.close()

        store = ActivityStore(path, config=ledger_config)
        store.reset()
        try:
            assert read_schema_version(store.connection) == SCHEMA_VERSION
            assert all(count == 0 for table, count in store.counts().items() if table != "store_meta")
        finally:
            store.close()

    def test_interrupted_creation_leaves_no_partial_schema(self, ledger_config, monkeypatch):
        """Une création interrompue ne laisse aucune table et la réouverture recrée tout."""
        path = ledger_config.activity_db_path
        real_apply = schema_module.apply_ddl

        def _interrupted(conn, ddl):
            real_apply(conn, ddl)
            raise duckdb.IOException("disque plein")

        monkeypatch.setattr(schema_module, "apply_ddl", _interrupted)
        with pytest.raises(duckdb.IOException):
            ActivityStore(path, config=ledger_config).connection  # noqa: B018

        conn = duckdb.connect(str(path))
        try:
            assert list_tables(conn) == set()
        finally:
            conn.close()

        monkeypatch.setattr(schema_module, "apply_ddl", real_apply)
        with ActivityStore(path, config=ledger_config) as store:
            assert read_schema_version(store.connection) == SCHEMA_VERSION


class TestConnectStore:
    """Ouverture du fichier DuckDB."""

    def test_lock_error_becomes_store_busy(self, tmp_path, monkeypatch):
        """Un verrou DuckDB tenu ailleurs devient StoreBusyError."""
        def _locked(*args, **kwargs):
            raise duckdb.IOException("IO Error: Could not set lock on file: Conflicting lock is held")

        monkeypatch.setattr(activity_store_module.duckdb, "connect", _locked)

        with pytest.raises(StoreBusyError):
            connect_store(tmp_path / "activities.duckdb")


# =============================================================================
# Écriture atomique
# =============================================================================


class TestWriteActivity:
    """Activité + roster complet dans une transaction."""

    def test_writes_activity_modes_teams_and_roster(self, activity_store):
        """L'activité, ses modes, ses équipes et tout le roster sont écrits ensemble."""
        report = make_report(
            7001, BASE_PERIOD, roster_size=8, tracked_weapons=[(WEAPON_GJALLARHORN, 5, 2)]
        )
        rows, _ = transform_report(report)

        outcome = activity_store.write_activity(rows)

        assert outcome.activity_inserted
        assert outcome.players_added == 8
        counts = activity_store.counts()
        assert counts["activity"] == 1
        assert counts["activity_mode"] == 2
        assert counts["team_result"] == 2
        assert counts["activity_player"] == 8
        assert counts["weapon_stat"] == 1

    def test_period_stored_as_naive_utc(self, activity_store):
        """La période est stockée en UTC naïf."""
        rows, _ = transform_report(make_report(7002, BASE_PERIOD))
        activity_store.write_activity(rows)

        stored = activity_store.connection.execute(
            "SELECT period FROM activity WHERE activity_id = 7002"
        ).fetchone()[0]
        assert stored == BASE_PERIOD.replace(tzinfo=None)

    def test_second_write_is_a_noop(self, activity_store):
        """Réécrire la même activité n'ajoute aucune ligne."""
        rows, _ = transform_report(make_report(7003, BASE_PERIOD))
        activity_store.write_activity(rows)

        outcome = activity_store.write_activity(rows)

        assert not outcome.activity_inserted
        assert outcome.players_added == 0
        assert activity_store.counts()["activity_player"] == 12

    def test_failure_rolls_back_whole_activity(self, activity_store):
        """Une erreur en cours d'écriture annule toute l'activité."""
        rows, _ = transform_report(make_report(7004, BASE_PERIOD))
        rows.players[-1].member_id = None

        with pytest.raises(duckdb.Error):
            activity_store.write_activity(rows)

        assert not activity_store.has_activity(7004)
        assert activity_store.counts()["activity_player"] == 0
        assert activity_store.counts()["activity_mode"] == 0

    def test_existing_ids_subset(self, activity_store):
        """Seuls les identifiants déjà écrits sont renvoyés."""
        rows, _ = transform_report(make_report(7005, BASE_PERIOD))
        activity_store.write_activity(rows)

        assert activity_store.existing_activity_ids([7005, 7006]) == {7005}
        assert activity_store.existing_activity_ids([]) == set()

    def test_latest_display_name_wins(self, activity_store):
        """Le nom de la partie la plus récente l'emporte, quel que soit l'ordre d'écriture."""
        recent = make_report(7010, BASE_PERIOD + timedelta(days=2))
        older = make_report(7011, BASE_PERIOD)
        recent.entries[0].display_name = "NewName#0001"
        older.entries[0].display_name = "OldName#0001"

        for report in (recent, older):
            rows, _ = transform_report(report)
            activity_store.write_activity(rows)

        name = activity_store.connection.execute(
            "SELECT display_name FROM member WHERE member_id = ?", [MEMBER_A]
        ).fetchone()[0]
        assert name == "NewName#0001"

    def test_writes_medals_with_manifest_names(self, activity_store, manifest_store):
        """Les médailles sont écrites avec leur nom, NULL si le manifest ne les connaît pas."""
        rows, misses = transform_report(
            make_report(7020, BASE_PERIOD, tracked_medals={MEDAL_DOUBLE: 2, MEDAL_UNKNOWN: 1}),
            manifest_store,
        )

        activity_store.write_activity(rows)

        assert [(m.kind, m.hash) for m in misses] == [("medal", MEDAL_UNKNOWN)]
        stored = activity_store.connection.execute(
            "SELECT member_id, character_id, medal_id, count, medal_name FROM medal_stat ORDER BY medal_id"
        ).fetchall()
        assert stored == [
            (MEMBER_A, CHARACTER_A_HUNTER, MEDAL_DOUBLE, 2, "Double Down"),
            (MEMBER_A, CHARACTER_A_HUNTER, MEDAL_UNKNOWN, 1, None),
        ]
        assert activity_store.connection.execute(
            "SELECT all_medals_earned FROM activity_player WHERE member_id = ?", [MEMBER_A]
        ).fetchone() == (3,)

    def test_failure_rolls_back_medals(self, activity_store):
        """Une écriture annulée ne laisse aucune médaille."""
        rows, _ = transform_report(make_report(7021, BASE_PERIOD, tracked_medals={MEDAL_DOUBLE: 1}))
        rows.players[-1].member_id = None

        with pytest.raises(duckdb.Error):
            activity_store.write_activity(rows)

        assert activity_store.counts()["medal_stat"] == 0


class TestUpsertMember:
    """Ligne member datée par les données, jamais par l'horloge."""

    def _member(self, store):
        return store.connection.execute(
            "SELECT member_id, platform, display_name, updated_at FROM member WHERE member_id = ?",
            [MEMBER_A],
        ).fetchone()

    def test_repeated_upsert_leaves_row_unchanged(self, activity_store):
        """Rejouer le même upsert ne modifie pas la ligne."""
        activity_store.upsert_member(MEMBER_A, 3, "Shaxx#0042", seen_at=BASE_PERIOD)
        first = self._member(activity_store)

        activity_store.upsert_member(MEMBER_A, 3, "Shaxx#0042", seen_at=BASE_PERIOD)

        assert self._member(activity_store) == first
        assert first[3] == BASE_PERIOD.replace(tzinfo=None)

    def test_undated_upsert_keeps_dated_values(self, activity_store):
        """Sans date, le nom et la plateforme connus sont conservés."""
        activity_store.upsert_member(MEMBER_A, 3, "Shaxx#0042", seen_at=BASE_PERIOD)

        activity_store.upsert_member(MEMBER_A, 2, "Autre#0001")

        assert self._member(activity_store) == (
            MEMBER_A,
            3,
            "Shaxx#0042",
            BASE_PERIOD.replace(tzinfo=None),
        )

    def test_undated_upsert_fills_missing_name(self, activity_store):
        """Un nom sans date comble un nom absent."""
        activity_store.upsert_member(MEMBER_A, 3, None)

        activity_store.upsert_member(MEMBER_A, 3, "Shaxx#0042")

        assert self._member(activity_store) == (MEMBER_A, 3, "Shaxx#0042", None)


# =============================================================================
# File d'attente et références
# =============================================================================


class TestPendingActivities:
    """File des PGCR introuvables."""

    def test_queue_twice_counts_attempts(self, activity_store):
        """Remettre en file la même activité incrémente le nombre de tentatives."""
        activity_store.queue_pending(8001, MEMBER_A, CHARACTER_A_HUNTER, period=BASE_PERIOD, reason="404")
        activity_store.queue_pending(8001, MEMBER_A, CHARACTER_A_HUNTER, period=BASE_PERIOD, reason="404")

        pending = activity_store.pending_activities(MEMBER_A)
        assert len(pending) == 1
        assert pending[0].attempts == 2

    def test_write_removes_pending(self, activity_store):
        """L'écriture d'une activité la retire de la file."""
        activity_store.queue_pending(8002, MEMBER_A, CHARACTER_A_HUNTER, reason="404")
        rows, _ = transform_report(make_report(8002, BASE_PERIOD))

        activity_store.write_activity(rows)

        assert activity_store.pending_activities() == []

    def test_remove_pending(self, activity_store):
        """Retrait explicite d'une activité en attente."""
        activity_store.queue_pending(8003, MEMBER_A, CHARACTER_A_HUNTER)
        activity_store.remove_pending(8003)
        assert activity_store.pending_activities() == []


class TestPendingReferences:
    """Noms résolus a posteriori quand le manifest rattrape le contenu."""

    def test_resolve_pending_references(self, activity_store, manifest_store):
        """Les noms de carte et d'arme manquants sont complétés depuis le manifest."""
        rows, _ = transform_report(
            make_report(8101, BASE_PERIOD, tracked_weapons=[(WEAPON_GJALLARHORN, 3, 1)])
        )
        activity_store.write_activity(rows)

        resolved = activity_store.resolve_pending_references(manifest_store)

        assert resolved == 2
        conn = activity_store.connection
        assert conn.execute("SELECT map_name FROM activity").fetchone()[0] == "Altar of Flame"
        assert conn.execute("SELECT weapon_name, weapon_type FROM weapon_stat").fetchone() == (
            "Gjallarhorn",
            "Rocket Launcher",
        )

    def test_resolve_pending_medal_names(self, activity_store, manifest_store):
        """Les noms de médailles manquants sont complétés, les inconnues restent NULL."""
        rows, _ = transform_report(
            make_report(8103, BASE_PERIOD, tracked_medals={MEDAL_DOUBLE: 2, MEDAL_UNKNOWN: 1})
        )
        activity_store.write_activity(rows)

        resolved = activity_store.resolve_pending_references(manifest_store)

        # carte + une médaille connue
        assert resolved == 2
        names = dict(
            activity_store.connection.execute("SELECT medal_id, medal_name FROM medal_stat").fetchall()
        )
        assert names == {MEDAL_DOUBLE: "Double Down", MEDAL_UNKNOWN: None}

    def test_nothing_to_resolve(self, activity_store, manifest_store):
        """Rien à résoudre quand le manifest était à jour à l'écriture."""
        rows, _ = transform_report(make_report(8102, BASE_PERIOD), manifest_store)
        activity_store.write_activity(rows)

        assert rows.activity.reference_hash == MAP_HASH
        assert activity_store.resolve_pending_references(manifest_store) == 0
