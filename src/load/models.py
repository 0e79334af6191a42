"""Persisted record types for books, notes, canonical identities and imports."""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Literal

from common.constants import TERMINAL_STATUSES
from common.errors import InvalidTransitionError
from extract.models import EntryType, Location

MatchStatus = Literal["verified", "unverified", "user-confirmed"]
MatchSource = Literal["provider", "manual", "fallback"]
Resolution = Literal["auto", "user-confirmed", "provisional"]
SourceFlow = Literal["import", "manual-entry"]
SessionStatus = Literal[
    "starting", "parsing", "deduplicating", "storing", "completed", "failed", "cancelled"
]
DeduplicationDecision = Literal["exact_match", "content_update", "unique", "manual_review"]


@dataclass
class Book:
    """A book as it appears in imported exports (one per raw title/author)."""

    id: str
    title: str
    author: str | None
    book_key: str
    created_at: datetime
    updated_at: datetime
    tags: list[str] = field(default_factory=list)
    note_count: int = 0
    import_source: str | None = None
    canonical_book_id: str | None = None


@dataclass
class Note:
    """A persisted highlight, note or bookmark.

    ``associated_highlight_id`` is only ever set on notes of type "note" and
    points at a highlight of the same book.
    """

    id: str
    book_id: str
    text: str
    content_hash: str
    entry_type: EntryType
    created_at: datetime
    updated_at: datetime
    location: Location | None = None
    page: int | None = None
    tags: list[str] = field(default_factory=list)
    associated_highlight_id: str | None = None
    imported_from: str | None = None
    parse_index: int | None = None


@dataclass
class CanonicalBookIdentity:
    """The single catalog record that all variants of a book resolve to."""

    id: str
    title: str
    normalized_title: str
    match_status: MatchStatus
    match_source: MatchSource
    created_at: datetime
    updated_at: datetime
    authors: list[str] = field(default_factory=list)
    external_volume_id: str | None = None
    isbn_13: str | None = None
    cover_url: str | None = None


@dataclass
class BookAlias:
    """Maps one normalized raw (title, author) key to a canonical book."""

    id: str
    normalized_key: str
    normalized_title: str
    raw_title: str
    raw_author: str | None
    canonical_book_id: str
    confidence: float
    resolution: Resolution
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class CanonicalLinkAudit:
    """Immutable record of one canonical resolution event."""

    source_flow: SourceFlow
    resolution_mode: Resolution
    resolved_at: datetime
    confidence: float | None = None
    provider: str | None = None
    provider_candidate_id: str | None = None


@dataclass
class DeduplicationResult:
    """Classification of one incoming entry against the existing corpus."""

    parse_index: int
    decision: DeduplicationDecision
    existing_note_id: str | None = None
    similarity: float = 0.0
    conflict_reason: str | None = None


@dataclass
class ImportStatistics:
    """Aggregate counters for an import session."""

    total_entries: int = 0
    entries_parsed: int = 0
    entries_failed: int = 0
    highlights: int = 0
    notes: int = 0
    bookmarks: int = 0
    books_added: int = 0
    books_updated: int = 0
    books_failed: int = 0
    notes_added: int = 0
    notes_updated: int = 0
    duplicates_skipped: int = 0
    manual_review: int = 0
    associated_notes: int = 0
    standalone_notes: int = 0
    auto_linked: int = 0
    needs_confirmation: int = 0
    provisional: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, int]) -> "ImportStatistics":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


# Allowed forward moves; terminal states have no outgoing edges
SESSION_TRANSITIONS: dict[str, frozenset[str]] = {
    "starting": frozenset({"parsing", "failed", "cancelled"}),
    "parsing": frozenset({"deduplicating", "failed", "cancelled"}),
    "deduplicating": frozenset({"storing", "failed", "cancelled"}),
    "storing": frozenset({"completed", "failed", "cancelled"}),
    "completed": frozenset(),
    "failed": frozenset(),
    "cancelled": frozenset(),
}


@dataclass
class ImportSession:
    """State of one import run."""

    id: str
    file_name: str
    file_size: int
    started_at: datetime
    status: SessionStatus = "starting"
    completed_at: datetime | None = None
    error: str | None = None
    statistics: ImportStatistics = field(default_factory=ImportStatistics)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def transition(self, status: SessionStatus, error: str | None = None) -> None:
        """Move to ``status``, refusing moves out of terminal states.

        Raises:
            InvalidTransitionError: If the move is not allowed
        """
        if status not in SESSION_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Import session {self.id} cannot move from '{self.status}' to '{status}'"
            )
        self.status = status
        if error is not None:
            self.error = error
        if status in TERMINAL_STATUSES:
            self.completed_at = datetime.now()
