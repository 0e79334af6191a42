"""Data models for parsed clippings entries."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

EntryType = Literal["highlight", "note", "bookmark"]


@dataclass(frozen=True)
class Location:
    """A Kindle location range. ``end`` is None for single locations."""

    start: int
    end: int | None = None

    @property
    def end_or_start(self) -> int:
        return self.end if self.end is not None else self.start

    def __str__(self) -> str:
        if self.end is None or self.end == self.start:
            return str(self.start)
        return f"{self.start}-{self.end}"


@dataclass
class RawAnnotationEntry:
    """A single annotation block as read from an export file.

    Lives only for the duration of an import: it is tokenized, associated,
    classified against the store and then converted into a persisted Note.
    """

    title: str
    author: str | None
    entry_type: EntryType
    content: str
    timestamp: datetime
    parse_index: int
    location: Location | None = None
    page: int | None = None
    temp_id: str = ""
    associated_temp_id: str | None = None

    def __post_init__(self):
        if not self.temp_id:
            self.temp_id = f"entry-{self.parse_index}"

    @property
    def book_key(self) -> str:
        """Identifier of the source book, unique per (title, author)."""
        return make_book_key(self.title, self.author)


@dataclass
class TokenizeResult:
    """Outcome of tokenizing one export file."""

    entries: list[RawAnnotationEntry]
    blocks_found: int
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    file_name: str | None = None

    @property
    def entries_failed(self) -> int:
        return len(self.errors)

    def count(self, entry_type: EntryType) -> int:
        return sum(1 for entry in self.entries if entry.entry_type == entry_type)


def make_book_key(title: str, author: str | None) -> str:
    """Build the raw book identifier used to group entries.

    Example:
        >>> make_book_key("Atomic Habits", "James Clear")
        'Atomic Habits|James Clear'
        >>> make_book_key("Notes", None)
        'Notes|'
    """
    return f"{title.strip()}|{(author or '').strip()}"
