"""Explicit read cache over the record store.

The import coordinator reads every existing book and note once per session
to build its deduplication index. ``RecordCache`` holds those reads so the
store is not scanned repeatedly, and is invalidated by the coordinator after
it writes. Nothing here is module-level: each coordinator gets its own cache.
"""

from common.logger import get_logger

from .models import Book, Note
from .store import RecordStore

logger = get_logger(__name__)


class RecordCache:
    """Lazily loaded snapshot of books and notes."""

    def __init__(self, store: RecordStore):
        self.store = store
        self._books: dict[str, Book] | None = None
        self._notes: list[Note] | None = None

    @property
    def is_loaded(self) -> bool:
        return self._books is not None or self._notes is not None

    def books_by_key(self) -> dict[str, Book]:
        """Return book_key -> Book for every stored book."""
        if self._books is None:
            self._books = {book.book_key: book for book in self.store.iter_books()}
            logger.debug(f"Cached {len(self._books)} book(s)")
        return self._books

    def book_keys_by_id(self) -> dict[str, str]:
        return {book.id: key for key, book in self.books_by_key().items()}

    def notes(self) -> list[Note]:
        if self._notes is None:
            self._notes = list(self.store.iter_notes())
            logger.debug(f"Cached {len(self._notes)} note(s)")
        return self._notes

    def invalidate(self) -> None:
        """Drop everything cached; the next read goes to the store."""
        self._books = None
        self._notes = None
