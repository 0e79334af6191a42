"""Tests for persisted record types."""

from datetime import datetime

import pytest

from common.errors import InvalidTransitionError
from load.models import ImportSession, ImportStatistics


def make_session():
    return ImportSession(
        id="import:1", file_name="My Clippings.txt", file_size=10, started_at=datetime(2024, 1, 1)
    )


class TestImportSession:
    """Tests for the session state machine."""

    def test_happy_path(self):
        session = make_session()
        for status in ("parsing", "deduplicating", "storing", "completed"):
            session.transition(status)

        assert session.status == "completed"
        assert session.is_terminal
        assert session.completed_at is not None

    def test_fail_from_any_active_state(self):
        session = make_session()
        session.transition("parsing")
        session.transition("failed", error="Too many parsing errors")

        assert session.status == "failed"
        assert session.error == "Too many parsing errors"

    @pytest.mark.parametrize("terminal", ["completed", "failed", "cancelled"])
    def test_terminal_states_are_final(self, terminal):
        session = make_session()
        session.status = terminal

        with pytest.raises(InvalidTransitionError):
            session.transition("parsing")

    def test_cannot_skip_stages(self):
        session = make_session()
        with pytest.raises(InvalidTransitionError, match="from 'starting' to 'storing'"):
            session.transition("storing")

    def test_not_terminal_while_running(self):
        session = make_session()
        assert not session.is_terminal
        assert session.completed_at is None


class TestImportStatistics:
    """Tests for statistics serialization."""

    def test_round_trip(self):
        stats = ImportStatistics(total_entries=3, highlights=2, notes=1, auto_linked=1)
        assert ImportStatistics.from_dict(stats.to_dict()) == stats

    def test_unknown_keys_are_ignored(self):
        stats = ImportStatistics.from_dict({"total_entries": 4, "legacy_counter": 9})
        assert stats.total_entries == 4
