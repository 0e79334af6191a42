"""CLI for canonical book resolution."""

import argparse
import sys

from common.constants import SOURCE_FLOW_MANUAL
from common.errors import StoreUnavailableError
from common.logger import error, get_logger, progress, setup_logging, success, warning
from load.store import open_store

from .clients.factory import PROVIDERS, create_provider
from .orchestrator import CanonicalResolver, ManualProposal

logger = get_logger(__name__)


def _show_proposal(proposal: ManualProposal) -> None:
    if not proposal.provider_available:
        warning(f"Provider unavailable: {proposal.error}")
    if not proposal.ranked:
        progress("No candidates found")
        return

    progress(f"\nCandidates for [bold]{proposal.title}[/bold]:")
    for i, scored in enumerate(proposal.ranked, start=1):
        candidate = scored.candidate
        authors = ", ".join(candidate.authors) or "unknown author"
        isbn = f"  ISBN {candidate.isbn_13}" if candidate.isbn_13 else ""
        progress(
            f"  {i}. [{scored.score:.2f}] {candidate.title} by {authors}{isbn}  "
            f"({candidate.candidate_id})"
        )
    progress(f"Best match band: {proposal.resolution.band}")


def _choose(proposal: ManualProposal) -> str | None:
    """Ask which candidate to link. Returns a candidate id, or None for none of these."""
    while True:
        answer = input(f"Select 1-{len(proposal.ranked)}, or 'n' for none of these: ").strip()
        if answer.lower() in ("n", "none"):
            return None
        if answer.isdigit() and 1 <= int(answer) <= len(proposal.ranked):
            return proposal.ranked[int(answer) - 1].candidate.candidate_id
        warning(f"Invalid choice: {answer!r}")


def cmd_resolve(args):
    """Resolve a book typed in by hand."""
    store = open_store(args.database)
    provider = create_provider(args.provider)
    try:
        resolver = CanonicalResolver(store, provider, source_flow=SOURCE_FLOW_MANUAL)
        proposal = resolver.propose(args.title, author=args.author, isbn=args.isbn)
        _show_proposal(proposal)

        if not proposal.needs_decision:
            success(f"Linked automatically to {proposal.canonical_id}")
            return

        if args.none or not proposal.ranked:
            choice = None
        elif args.select:
            choice = args.select
        else:
            choice = _choose(proposal)

        if choice is None:
            resolution = resolver.confirm_none(proposal)
            success(f"Created provisional record {resolution.canonical_id}")
        else:
            try:
                resolution = resolver.confirm_selection(proposal, choice)
            except ValueError as e:
                error(str(e))
                sys.exit(1)
            success(f"Linked to {resolution.canonical_id} ({resolution.match_status})")
    finally:
        provider.close()
        store.close()


def cmd_status(args):
    """Show canonical matching status."""
    store = open_store(args.database)
    try:
        statuses = store.canonical_status_counts()
        modes = store.audit_mode_counts()
    finally:
        store.close()

    total = sum(statuses.values())
    logger.info("\nCanonical Books Status Report")
    logger.info("=" * 50)
    logger.info(f"\nCanonical books ({total} total):")
    for status in ("verified", "user-confirmed", "unverified"):
        count = statuses.get(status, 0)
        percent = count / total * 100 if total else 0.0
        logger.info(f"  {status:<16} {count:4d} ({percent:5.1f}%)")

    logger.info("\nResolutions by mode:")
    for mode in ("auto", "user-confirmed", "provisional"):
        logger.info(f"  {mode:<16} {modes.get(mode, 0):4d}")


def main():
    """Main entry point for the canonical matching CLI."""
    setup_logging()

    parser = argparse.ArgumentParser(
        description="Resolve books to canonical catalog records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--database",
        "-d",
        help="SQLite database file (default: DATABASE_PATH)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    resolve_parser = subparsers.add_parser(
        "resolve",
        help="Resolve a book entered by hand",
        description=(
            "Search the metadata provider and link the book to a canonical record.\n\n"
            "Scores of 0.90 and above are linked without asking. Otherwise pick a\n"
            "candidate (interactively or with --select) or record a provisional\n"
            "entry with --none."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    resolve_parser.add_argument("title", help="Book title")
    resolve_parser.add_argument("--author", "-a", help="Author name")
    resolve_parser.add_argument("--isbn", help="ISBN-13, if known")
    resolve_parser.add_argument(
        "--provider",
        choices=sorted(PROVIDERS),
        default=None,
        help="Metadata provider (default: METADATA_PROVIDER)",
    )
    choice = resolve_parser.add_mutually_exclusive_group()
    choice.add_argument("--select", metavar="CANDIDATE_ID", help="Link this candidate")
    choice.add_argument("--none", action="store_true", help="Reject all candidates")

    subparsers.add_parser("status", help="Show canonical matching status")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "resolve":
            cmd_resolve(args)
        elif args.command == "status":
            cmd_status(args)
    except StoreUnavailableError as e:
        error(f"Database unavailable: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
