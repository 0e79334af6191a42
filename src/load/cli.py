"""CLI for importing Kindle clippings."""

import argparse
import sys
from pathlib import Path

from common.errors import StoreUnavailableError
from common.logger import error, get_logger, progress, setup_logging, success, warning
from enrich.clients.factory import PROVIDERS, create_provider
from enrich.clients.null_provider import NullProvider
from enrich.orchestrator import CanonicalResolver

from .importer import ImportSessionCoordinator, ProgressUpdate
from .store import open_store

logger = get_logger(__name__)


def _coordinator(args, provider_name: str | None = None) -> ImportSessionCoordinator:
    store = open_store(args.database)
    provider = create_provider(provider_name)
    return ImportSessionCoordinator(
        store,
        CanonicalResolver(store, provider),
        max_errors=getattr(args, "max_errors", None),
        strict=getattr(args, "strict", False),
    )


def _print_progress(update: ProgressUpdate) -> None:
    if update.total:
        logger.debug(f"{update.stage}: {update.processed}/{update.total}")


def cmd_run(args):
    """Import one clippings file."""
    path = Path(args.file)
    if not path.exists():
        error(f"File not found: {path}")
        sys.exit(1)

    text = path.read_text(encoding="utf-8-sig")
    coordinator = _coordinator(args, args.provider)
    try:
        result = coordinator.run(text, path.name, on_progress=_print_progress)
    finally:
        coordinator.resolver.provider.close()
        coordinator.store.close()

    stats = result.statistics
    progress(f"\nImport [bold]{result.session_id}[/bold]: {result.status}")
    progress(f"  Entries:        {stats.entries_parsed} parsed, {stats.entries_failed} failed")
    progress(f"  Books:          {stats.books_added} added, {stats.books_updated} updated")
    progress(f"  Notes:          {stats.notes_added} added, {stats.notes_updated} updated")
    progress(f"  Duplicates:     {stats.duplicates_skipped} skipped")
    progress(
        f"  Associations:   {stats.associated_notes} linked, {stats.standalone_notes} standalone"
    )
    progress(
        f"  Canonical:      {stats.auto_linked} auto-linked, "
        f"{stats.needs_confirmation} need confirmation, {stats.provisional} provisional"
    )
    if stats.manual_review:
        warning(f"{stats.manual_review} entr(ies) queued for manual review")
    for message in result.errors:
        warning(message)

    if not result.succeeded:
        error(f"Import {result.status}")
        sys.exit(1)
    success("Import complete!")


def cmd_sessions(args):
    """List previous imports."""
    store = open_store(args.database)
    try:
        coordinator = ImportSessionCoordinator(store, CanonicalResolver(store, NullProvider()))
        sessions = coordinator.list_sessions(
            status=args.status, file_name=args.file, limit=args.limit
        )
    finally:
        store.close()

    if not sessions:
        logger.info("No import sessions found")
        return

    for session in sessions:
        stats = session.statistics
        progress(
            f"{session.id}  {session.started_at:%Y-%m-%d %H:%M}  {session.status:<10} "
            f"{session.file_name}  (+{stats.notes_added} notes, ~{stats.notes_updated} updated)"
        )


def cmd_rollback(args):
    """Remove everything an import added."""
    store = open_store(args.database)
    try:
        coordinator = ImportSessionCoordinator(store, CanonicalResolver(store, NullProvider()))
        summary = coordinator.rollback_session(args.session_id)
    except ValueError as e:
        error(str(e))
        sys.exit(1)
    finally:
        store.close()

    success(
        f"Rolled back {args.session_id}: {summary['notes_removed']} note(s), "
        f"{summary['books_removed']} book(s) removed"
    )


def main():
    """Main entry point for the import CLI."""
    setup_logging()

    parser = argparse.ArgumentParser(
        description="Import Kindle 'My Clippings.txt' exports",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--database",
        "-d",
        help="SQLite database file (default: DATABASE_PATH)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Import a clippings file")
    run_parser.add_argument("file", help="Path to My Clippings.txt")
    run_parser.add_argument(
        "--strict",
        action="store_true",
        help="Reject blocks that only match the loose fallback patterns",
    )
    run_parser.add_argument(
        "--max-errors",
        type=int,
        default=None,
        help="Malformed blocks tolerated before the import fails (default: IMPORT_MAX_ERRORS)",
    )
    run_parser.add_argument(
        "--provider",
        choices=sorted(PROVIDERS),
        default=None,
        help="Metadata provider for canonical matching (default: METADATA_PROVIDER)",
    )

    sessions_parser = subparsers.add_parser("sessions", help="List previous imports")
    sessions_parser.add_argument("--status", help="Only sessions in this status")
    sessions_parser.add_argument("--file", help="Only sessions whose file name contains this")
    sessions_parser.add_argument("--limit", type=int, default=20, help="Maximum rows (default: 20)")

    rollback_parser = subparsers.add_parser(
        "rollback", help="Remove the notes and books added by an import"
    )
    rollback_parser.add_argument("session_id", help="Import session id (see 'sessions')")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "run":
            cmd_run(args)
        elif args.command == "sessions":
            cmd_sessions(args)
        elif args.command == "rollback":
            cmd_rollback(args)
    except StoreUnavailableError as e:
        error(f"Database unavailable: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
