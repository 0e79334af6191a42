"""SQLite database adapter implementation."""

import sqlite3
from pathlib import Path
from typing import Any

from .interface import DatabaseAdapter
from .types import ConnectionError as DBConnectionError
from .types import DatabaseError, Params, Row, SchemaError
from .types import IntegrityError as DBIntegrityError

MEMORY_PATH = ":memory:"


class SQLiteAdapter(DatabaseAdapter):
    """SQLite database adapter.

    Pass ``":memory:"`` as the path for a throwaway database, which is what
    most tests do.
    """

    def __init__(self, db_path: str | Path, timeout: float = 5.0):
        """Initialize SQLite adapter.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
            timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = db_path if str(db_path) == MEMORY_PATH else Path(db_path)
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._schema_file = Path(__file__).parent / "schema_sqlite.sql"

    @property
    def in_memory(self) -> bool:
        return str(self.db_path) == MEMORY_PATH

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def connect(self) -> None:
        """Open the connection and enable foreign keys."""
        if self._conn is not None:
            return
        try:
            if not self.in_memory:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            self._conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        except (sqlite3.Error, OSError) as e:
            raise DBConnectionError(f"Failed to connect to SQLite database: {e}") from e

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _require_connection(self) -> sqlite3.Connection:
        if not self._conn:
            raise DatabaseError("No active connection")
        return self._conn

    def commit(self) -> None:
        """Commit current transaction."""
        try:
            self._require_connection().commit()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to commit transaction: {e}") from e

    def rollback(self) -> None:
        """Rollback current transaction."""
        try:
            self._require_connection().rollback()
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to rollback transaction: {e}") from e

    def create_schema(self) -> None:
        """Create all database tables and indexes from the SQL file."""
        conn = self._require_connection()

        if not self._schema_file.exists():
            raise SchemaError(f"Schema file not found: {self._schema_file}")

        try:
            conn.executescript(self._schema_file.read_text(encoding="utf-8"))
            conn.commit()
        except sqlite3.Error as e:
            raise SchemaError(f"Failed to create schema: {e}") from e
        except OSError as e:
            raise SchemaError(f"Failed to read schema file: {e}") from e

    def drop_schema(self) -> None:
        """Drop all tables in SQLite database."""
        conn = self._require_connection()
        try:
            conn.execute("PRAGMA foreign_keys = OFF")
            for table in self.get_tables():
                if table != "sqlite_sequence":
                    conn.execute(f"DROP TABLE IF EXISTS {table}")
            conn.commit()
            conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise SchemaError(f"Failed to drop schema: {e}") from e

    def get_tables(self) -> list[str]:
        """Get list of all tables in database."""
        rows = self.fetchall("SELECT name FROM sqlite_master WHERE type='table' ORDER BY name")
        return [row["name"] for row in rows]

    def execute(self, query: str, params: Params | None = None) -> Any:
        """Execute a query and return cursor."""
        conn = self._require_connection()
        try:
            return conn.execute(query, params or ())
        except sqlite3.IntegrityError as e:
            raise DBIntegrityError(f"Integrity constraint violation: {e}") from e
        except sqlite3.Error as e:
            raise DatabaseError(f"Query execution failed: {e}") from e

    def fetchone(self, query: str, params: Params | None = None) -> Row | None:
        """Execute query and fetch one result as dictionary."""
        row = self.execute(query, params).fetchone()
        return dict(row) if row is not None else None

    def fetchall(self, query: str, params: Params | None = None) -> list[Row]:
        """Execute query and fetch all results as list of dictionaries."""
        return [dict(row) for row in self.execute(query, params).fetchall()]

    def __repr__(self) -> str:
        """String representation."""
        status = "connected" if self._conn else "disconnected"
        return f"SQLiteAdapter(db_path={self.db_path}, status={status})"
