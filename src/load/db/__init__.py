"""Database abstraction layer for kindle-notes.

Example:
    >>> from load.db import DatabaseConfig, create_database
    >>>
    >>> adapter = create_database(DatabaseConfig(db_path="data/kindle_notes.db"))
    >>> adapter.connect()
    >>> adapter.create_schema()
    >>> adapter.fetchscalar("SELECT COUNT(*) FROM books")
    0
    >>> adapter.close()
"""

from .factory import DatabaseConfig, create_database, get_adapter
from .interface import DatabaseAdapter
from .sqlite_adapter import SQLiteAdapter
from .types import (
    ConnectionError,
    DatabaseError,
    IntegrityError,
    Params,
    Row,
    SchemaError,
)

__all__ = [
    # Factory
    "DatabaseConfig",
    "create_database",
    "get_adapter",
    # Adapters
    "DatabaseAdapter",
    "SQLiteAdapter",
    # Types and exceptions
    "DatabaseError",
    "ConnectionError",
    "IntegrityError",
    "SchemaError",
    "Params",
    "Row",
]
