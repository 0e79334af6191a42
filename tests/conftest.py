"""Shared fixtures for kindle-notes tests."""

import pytest

from load.db import SQLiteAdapter
from load.store import RecordStore


@pytest.fixture
def store():
    """Record store over a fresh in-memory database."""
    store = RecordStore(SQLiteAdapter(":memory:"))
    store.open()
    yield store
    store.close()
