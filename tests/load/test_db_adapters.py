"""Tests for database adapters."""

from pathlib import Path

import pytest

from load.db import DatabaseConfig, DatabaseError, IntegrityError, create_database
from load.db.sqlite_adapter import SQLiteAdapter

EXPECTED_TABLES = [
    "book_aliases",
    "books",
    "canonical_books",
    "canonical_link_audits",
    "import_sessions",
    "notes",
    "review_queue",
]

INSERT_SESSION = (
    "INSERT INTO import_sessions (id, file_name, status, started_at) VALUES (?, ?, ?, ?)"
)


def _session_row(session_id):
    return (session_id, "My Clippings.txt", "starting", "2024-01-01T10:00:00")


class TestSQLiteAdapter:
    """Tests for SQLite adapter."""

    def test_create_adapter(self, tmp_path):
        """Test creating a SQLite adapter."""
        db_path = tmp_path / "test.db"
        adapter = SQLiteAdapter(db_path)
        assert adapter.db_path == db_path
        assert adapter._conn is None

    def test_connect_and_close(self, tmp_path):
        """Test connecting to and closing database."""
        adapter = SQLiteAdapter(tmp_path / "test.db")

        adapter.connect()
        assert adapter.is_connected

        adapter.close()
        assert not adapter.is_connected

    def test_connect_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "test.db"
        adapter = SQLiteAdapter(db_path)
        adapter.connect()
        adapter.close()
        assert db_path.exists()

    def test_create_schema(self, tmp_path):
        """Test creating database schema."""
        adapter = SQLiteAdapter(tmp_path / "test.db")
        adapter.connect()

        adapter.create_schema()

        # sqlite_sequence is created automatically for AUTOINCREMENT
        tables = [t for t in adapter.get_tables() if t != "sqlite_sequence"]
        assert tables == EXPECTED_TABLES

        adapter.close()

    def test_create_schema_is_idempotent(self):
        adapter = SQLiteAdapter(":memory:")
        adapter.connect()
        adapter.create_schema()
        adapter.create_schema()
        assert "books" in adapter.get_tables()
        adapter.close()

    def test_execute_and_fetch(self):
        """Test executing queries and fetching results as dictionaries."""
        adapter = SQLiteAdapter(":memory:")
        adapter.connect()
        adapter.create_schema()

        adapter.execute(INSERT_SESSION, _session_row("s1"))
        adapter.execute(INSERT_SESSION, _session_row("s2"))
        adapter.commit()

        row = adapter.fetchone("SELECT id, status FROM import_sessions WHERE id = ?", ("s1",))
        assert row == {"id": "s1", "status": "starting"}

        rows = adapter.fetchall("SELECT id FROM import_sessions ORDER BY id")
        assert [r["id"] for r in rows] == ["s1", "s2"]

        assert adapter.fetchscalar("SELECT COUNT(*) FROM import_sessions") == 2
        assert adapter.fetchone("SELECT id FROM import_sessions WHERE id = ?", ("nope",)) is None

        adapter.close()

    def test_commit_and_rollback(self, tmp_path):
        """Test transaction commit and rollback."""
        adapter = SQLiteAdapter(tmp_path / "test.db")
        adapter.connect()
        adapter.create_schema()

        adapter.execute(INSERT_SESSION, _session_row("committed"))
        adapter.commit()
        adapter.execute(INSERT_SESSION, _session_row("rolled-back"))
        adapter.rollback()

        ids = [r["id"] for r in adapter.fetchall("SELECT id FROM import_sessions")]
        assert ids == ["committed"]

        adapter.close()

    def test_integrity_error(self):
        """Test that integrity errors are properly raised."""
        adapter = SQLiteAdapter(":memory:")
        adapter.connect()
        adapter.create_schema()

        adapter.execute(INSERT_SESSION, _session_row("pk_test"))
        with pytest.raises(IntegrityError):
            adapter.execute(INSERT_SESSION, _session_row("pk_test"))

        adapter.close()

    def test_foreign_keys_enforced(self):
        adapter = SQLiteAdapter(":memory:")
        adapter.connect()
        adapter.create_schema()

        with pytest.raises(IntegrityError):
            adapter.execute(
                """
                INSERT INTO notes (id, book_id, text, content_hash, entry_type,
                                   created_at, updated_at)
                VALUES ('n1', 'missing-book', 'x', 'h', 'highlight', 't', 't')
                """
            )

        adapter.close()

    def test_query_without_connection(self):
        adapter = SQLiteAdapter(":memory:")
        with pytest.raises(DatabaseError, match="No active connection"):
            adapter.fetchall("SELECT 1")

    def test_context_manager(self, tmp_path):
        """Test using adapter as context manager."""
        adapter = SQLiteAdapter(tmp_path / "test.db")

        with adapter:
            adapter.create_schema()
            adapter.execute(INSERT_SESSION, _session_row("ctx_test"))

        adapter.connect()
        assert adapter.fetchscalar("SELECT COUNT(*) FROM import_sessions") == 1
        adapter.close()

    def test_drop_schema_method(self):
        """Test drop_schema() method."""
        adapter = SQLiteAdapter(":memory:")
        adapter.connect()
        adapter.create_schema()

        adapter.drop_schema()

        tables = [t for t in adapter.get_tables() if t != "sqlite_sequence"]
        assert tables == []

        adapter.close()


class TestDatabaseFactory:
    """Tests for database factory."""

    def test_create_sqlite_from_config(self, tmp_path):
        """Test creating SQLite adapter from config."""
        db_path = tmp_path / "test.db"
        adapter = create_database(DatabaseConfig(db_path=db_path, timeout=2.0))

        assert isinstance(adapter, SQLiteAdapter)
        assert adapter.db_path == db_path
        assert adapter.timeout == 2.0

    def test_config_requires_path(self):
        with pytest.raises(ValueError, match="db_path is required"):
            DatabaseConfig(db_path="")

    def test_config_rejects_non_positive_timeout(self):
        with pytest.raises(ValueError, match="timeout must be positive"):
            DatabaseConfig(db_path="test.db", timeout=0)

    def test_config_converts_string_path_to_path_object(self):
        """Test that config converts string paths to Path objects."""
        config = DatabaseConfig(db_path="test.db")
        assert isinstance(config.db_path, Path)

    def test_config_keeps_memory_path(self):
        assert DatabaseConfig(db_path=":memory:").db_path == ":memory:"

    def test_get_adapter_uses_database_path(self, monkeypatch, tmp_path):
        """Test get_adapter() creates SQLite adapter from env."""
        from load.db import get_adapter

        monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "env.db"))

        adapter = get_adapter()
        assert isinstance(adapter, SQLiteAdapter)
        assert adapter.db_path == tmp_path / "env.db"
