"""Environment configuration for kindle-notes.

All environment variable access goes through this module so defaults are
documented in a single place. Values are re-read on every call, which lets
tests override them with ``monkeypatch.setenv``.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


class Environment:
    """Interface for accessing environment configuration."""

    @staticmethod
    def database_path() -> Path:
        """Get the SQLite database file path.

        Returns:
            Path to SQLite database file, defaults to ./data/kindle_notes.db
        """
        return Path(os.getenv("DATABASE_PATH", "./data/kindle_notes.db"))

    @staticmethod
    def metadata_provider() -> str:
        """Get the external metadata provider name.

        Returns:
            One of 'google', 'openlibrary' or 'none', defaults to 'google'
        """
        return os.getenv("METADATA_PROVIDER", "google").lower()

    @staticmethod
    def google_books_api_key() -> str | None:
        """Get the optional Google Books API key.

        Returns:
            API key, or None when requests should be sent anonymously
        """
        return os.getenv("GOOGLE_BOOKS_API_KEY") or None

    @staticmethod
    def provider_timeout_seconds() -> float:
        """Get the timeout applied to every metadata provider request.

        Returns:
            Timeout in seconds, defaults to 5
        """
        return float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "5"))

    @staticmethod
    def provider_requests_per_minute() -> int:
        """Get the provider rate limit.

        Returns:
            Maximum requests per minute, defaults to 60
        """
        return int(os.getenv("PROVIDER_REQUESTS_PER_MINUTE", "60"))

    @staticmethod
    def import_max_errors() -> int:
        """Get the malformed-entry budget for a single import.

        Returns:
            Number of malformed blocks tolerated, defaults to 10
        """
        return int(os.getenv("IMPORT_MAX_ERRORS", "10"))

    @staticmethod
    def import_chunk_size() -> int:
        """Get the number of entries processed between cooperative yields.

        Returns:
            Chunk size, defaults to 200
        """
        return int(os.getenv("IMPORT_CHUNK_SIZE", "200"))


# Singleton instance for convenient access
env = Environment()
