"""Database factory for creating database adapters."""

from dataclasses import dataclass
from pathlib import Path

from .interface import DatabaseAdapter
from .sqlite_adapter import MEMORY_PATH, SQLiteAdapter


@dataclass
class DatabaseConfig:
    """Database configuration container.

    Attributes:
        db_path: Path to the SQLite database file, or ":memory:"
        timeout: Seconds to wait on a locked database
    """

    db_path: Path | str
    timeout: float = 5.0

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not str(self.db_path):
            raise ValueError("db_path is required")
        if str(self.db_path) != MEMORY_PATH and isinstance(self.db_path, str):
            self.db_path = Path(self.db_path)
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")


def create_database(config: DatabaseConfig) -> DatabaseAdapter:
    """Create a database adapter for the given configuration.

    Example:
        >>> adapter = create_database(DatabaseConfig(db_path=":memory:"))
        >>> adapter.connect()
        >>> adapter.create_schema()
    """
    return SQLiteAdapter(config.db_path, timeout=config.timeout)


def get_adapter() -> DatabaseAdapter:
    """Get database adapter using environment configuration (DATABASE_PATH)."""
    from common.env import env

    return create_database(DatabaseConfig(db_path=env.database_path()))
