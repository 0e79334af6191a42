"""Tests for the kindle-import command line."""

import sys

import pytest
from support import ATOMIC_HABITS_EXPORT

from load import cli
from load.store import open_store


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "notes.db")


@pytest.fixture
def export_file(tmp_path):
    path = tmp_path / "My Clippings.txt"
    path.write_text(ATOMIC_HABITS_EXPORT, encoding="utf-8")
    return str(path)


def run_cli(monkeypatch, *args):
    monkeypatch.setattr(sys, "argv", ["kindle-import", *args])
    cli.main()


def flat(text):
    """Undo console line wrapping."""
    return " ".join(text.split())


def test_run_imports_file(monkeypatch, capsys, db_path, export_file):
    run_cli(monkeypatch, "--database", db_path, "run", export_file, "--provider", "none")

    out = flat(capsys.readouterr().out)
    assert "Import complete!" in out
    assert "2 added" in out

    store = open_store(db_path)
    try:
        assert [b.title for b in store.iter_books()] == ["Atomic Habits"]
    finally:
        store.close()


def test_run_missing_file(monkeypatch, db_path, tmp_path):
    with pytest.raises(SystemExit) as exc_info:
        run_cli(monkeypatch, "--database", db_path, "run", str(tmp_path / "missing.txt"))
    assert exc_info.value.code == 1


def test_sessions_and_rollback(monkeypatch, capsys, db_path, export_file):
    run_cli(monkeypatch, "--database", db_path, "run", export_file, "--provider", "none")
    capsys.readouterr()

    run_cli(monkeypatch, "--database", db_path, "sessions")
    listing = flat(capsys.readouterr().out)
    assert "My Clippings.txt" in listing
    session_id = listing.split()[0]

    run_cli(monkeypatch, "--database", db_path, "rollback", session_id)
    assert "2 note(s), 1 book(s) removed" in flat(capsys.readouterr().out)


def test_rollback_unknown_session(monkeypatch, db_path):
    with pytest.raises(SystemExit) as exc_info:
        run_cli(monkeypatch, "--database", db_path, "rollback", "import:missing")
    assert exc_info.value.code == 1


def test_no_command_prints_help(monkeypatch):
    with pytest.raises(SystemExit) as exc_info:
        run_cli(monkeypatch)
    assert exc_info.value.code == 1
