"""Row type and exceptions raised by database adapters.

Adapters translate driver exceptions into these classes; the record store
in turn wraps them into the pipeline's PersistenceError family.
"""

from typing import Any

# A row as returned by fetchone/fetchall
Row = dict[str, Any]

# Positional query parameters
Params = tuple[Any, ...]


class DatabaseError(Exception):
    """A query or transaction failed."""


class ConnectionError(DatabaseError):
    """The database could not be opened."""


class IntegrityError(DatabaseError):
    """A UNIQUE, CHECK or foreign key constraint rejected a write."""


class SchemaError(DatabaseError):
    """The schema could not be created or dropped."""
