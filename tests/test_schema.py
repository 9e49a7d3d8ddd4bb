"""
Tests for Schema Migrations
===========================

Tests for db/schema.py - versioned, idempotent schema creation.
"""

import tempfile
from pathlib import Path

import pytest
from sqlalchemy import inspect, select, text

from ledger.db import schema
from ledger.db.connection import create_ledger_engine
from ledger.db.models import SchemaVersion
from ledger.db.schema import SCHEMA_VERSION, current_version, init_schema
from ledger.errors import StorageError


ENTITY_TABLES = {"projects", "sessions", "decisions", "overrides", "ai_attempts", "notes"}


@pytest.fixture
def engine():
    """Engine on a fresh database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        eng = create_ledger_engine(Path(tmpdir) / "ledger.db")
        yield eng
        eng.dispose()


def _indexed_columns(eng, table: str) -> set[str]:
    columns = set()
    for index in inspect(eng).get_indexes(table):
        columns.update(index["column_names"])
    return columns


class TestInitSchema:
    """Tests for init_schema."""

    def test_fresh_store_starts_at_zero(self, engine):
        assert current_version(engine) == 0

    def test_creates_all_tables(self, engine):
        version = init_schema(engine)

        assert version == SCHEMA_VERSION
        tables = set(inspect(engine).get_table_names())
        assert ENTITY_TABLES <= tables
        assert "schema_version" in tables

    def test_records_applied_versions(self, engine):
        init_schema(engine)

        with engine.connect() as conn:
            versions = conn.execute(select(SchemaVersion.version)).scalars().all()
        assert versions == [v for v, _, _ in schema.MIGRATIONS]

    def test_second_run_changes_nothing(self, engine):
        init_schema(engine)
        assert init_schema(engine) == SCHEMA_VERSION

        with engine.connect() as conn:
            count = conn.execute(text("SELECT COUNT(*) FROM schema_version")).scalar_one()
        assert count == len(schema.MIGRATIONS)

    def test_lookup_indexes_exist(self, engine):
        init_schema(engine)

        assert {"project_id", "session_id", "status", "category"} <= _indexed_columns(engine, "decisions")
        assert {"project_id", "session_id", "outcome"} <= _indexed_columns(engine, "ai_attempts")
        assert "decision_id" in _indexed_columns(engine, "overrides")
        assert "project_id" in _indexed_columns(engine, "notes")
        assert "project_id" in _indexed_columns(engine, "sessions")

    def test_foreign_keys_enforced(self, engine):
        init_schema(engine)
        with engine.connect() as conn:
            assert conn.execute(text("PRAGMA foreign_keys")).scalar_one() == 1


class TestMigrationOrdering:
    """Tests for applying migrations past the stored version."""

    def test_only_newer_migrations_run(self, engine, monkeypatch):
        init_schema(engine)
        applied = []

        def _migrate_v2(conn):
            applied.append(2)
            conn.execute(text("CREATE TABLE extra (id INTEGER PRIMARY KEY)"))

        monkeypatch.setattr(schema, "MIGRATIONS", schema.MIGRATIONS + [(2, "extra table", _migrate_v2)])

        assert init_schema(engine) == 2
        assert init_schema(engine) == 2
        assert applied == [2]
        assert "extra" in inspect(engine).get_table_names()

    def test_failing_migration_raises_storage_error(self, engine, monkeypatch):
        def _broken(conn):
            conn.execute(text("CREATE TABL broken"))

        monkeypatch.setattr(schema, "MIGRATIONS", [(1, "broken", _broken)])

        with pytest.raises(StorageError) as exc_info:
            init_schema(engine)
        assert exc_info.value.operation == "initialize schema"
        assert current_version(engine) == 0
