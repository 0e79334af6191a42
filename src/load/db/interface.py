"""Abstract database adapter interface.

The record store talks to the database only through this interface, so a
different backend needs nothing more than another adapter.
"""

from abc import ABC, abstractmethod
from typing import Any

from .types import Params, Row


class DatabaseAdapter(ABC):
    """Abstract database adapter interface."""

    @abstractmethod
    def connect(self) -> None:
        """Establish database connection.

        Raises:
            ConnectionError: If connection fails
        """

    @abstractmethod
    def close(self) -> None:
        """Close database connection."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether a connection is currently open."""

    @abstractmethod
    def commit(self) -> None:
        """Commit current transaction.

        Raises:
            DatabaseError: If commit fails
        """

    @abstractmethod
    def rollback(self) -> None:
        """Rollback current transaction.

        Raises:
            DatabaseError: If rollback fails
        """

    @abstractmethod
    def create_schema(self) -> None:
        """Create all tables and indexes. Safe to call on an existing database.

        Raises:
            SchemaError: If schema creation fails
        """

    @abstractmethod
    def drop_schema(self) -> None:
        """Drop all tables.

        Raises:
            SchemaError: If schema drop fails
        """

    @abstractmethod
    def get_tables(self) -> list[str]:
        """Get list of all tables in database."""

    @abstractmethod
    def execute(self, query: str, params: Params | None = None) -> Any:
        """Execute a query and return the cursor.

        Raises:
            DatabaseError: If execution fails
            IntegrityError: If integrity constraint violated
        """

    @abstractmethod
    def fetchone(self, query: str, params: Params | None = None) -> Row | None:
        """Execute query and fetch one result as dictionary."""

    @abstractmethod
    def fetchall(self, query: str, params: Params | None = None) -> list[Row]:
        """Execute query and fetch all results as list of dictionaries."""

    def fetchscalar(self, query: str, params: Params | None = None) -> Any:
        """Execute query and return first column of first row.

        Useful for COUNT(*) and similar single-value queries.
        """
        row = self.fetchone(query, params)
        if row is None:
            return None
        return next(iter(row.values()))

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit: commit on success, rollback on error."""
        if exc_type is not None:
            self.rollback()
        else:
            self.commit()
        self.close()
        return False
