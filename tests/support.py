"""Test doubles and sample exports shared across test modules."""

from enrich.clients.base import MetadataProvider
from enrich.models import BookCandidate

HIGHLIGHT_BLOCK = (
    "Atomic Habits (James Clear)\n"
    "- Your Highlight on page 34 | location 512-514 | Added on Monday, January 1, 2024 10:00:00 AM\n"
    "\n"
    "Small habits compound.\n"
)
NOTE_BLOCK = (
    "Atomic Habits (James Clear)\n"
    "- Your Note on location 514 | Added on Monday, January 1, 2024 10:01:00 AM\n"
    "\n"
    "This is the key idea.\n"
)
SEPARATOR = "==========\n"

ATOMIC_HABITS_EXPORT = HIGHLIGHT_BLOCK + SEPARATOR + NOTE_BLOCK + SEPARATOR

ATOMIC_HABITS_CANDIDATE = BookCandidate(
    candidate_id="vol-atomic",
    title="Atomic Habits",
    authors=("James Clear",),
    isbn_13="9780735211292",
    cover_url="https://books.example/atomic.jpg",
    source="stub",
)


def block(title, metadata, body=""):
    """Build one clippings block followed by a separator."""
    return f"{title}\n{metadata}\n\n{body}\n{SEPARATOR}"


class StubProvider(MetadataProvider):
    """Provider returning canned candidates, or raising a canned error."""

    name = "stub"

    def __init__(self, candidates=None, error=None):
        self.candidates = list(candidates or [])
        self.error = error
        self.calls = []

    def _search(self, title, author):
        self.calls.append((title, author))
        if self.error is not None:
            raise self.error
        return list(self.candidates)
