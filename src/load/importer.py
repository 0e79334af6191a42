"""Import session coordination.

``ImportSessionCoordinator.run`` drives one export file through the whole
pipeline and records its progress on an ``ImportSession``:

    starting -> parsing -> deduplicating -> storing -> completed
                                                     | failed | cancelled

Parsing tokenizes the export and links notes to highlights. Deduplicating
classifies every entry against the notes already stored. Storing resolves
each new book to a canonical identity and writes that book's notes in one
transaction. A failure while storing one book is counted and the import
moves on; only an exhausted error budget or an unreachable store fails the
session. The caller always gets an ``ImportResult`` back.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime

from common.env import env
from common.errors import (
    ErrorBudgetExceededError,
    KindleNotesError,
    PersistenceError,
    StoreUnavailableError,
)
from common.logger import get_logger
from enrich.orchestrator import CanonicalResolver
from extract.association import associate
from extract.item_id import content_hash, new_id
from extract.models import RawAnnotationEntry
from extract.tokenizer import tokenize

from .cache import RecordCache
from .deduplication import DeduplicationEngine, DeduplicationIndex
from .models import (
    Book,
    DeduplicationResult,
    ImportSession,
    ImportStatistics,
    Note,
    SessionStatus,
)
from .store import RecordStore

logger = get_logger(__name__)


class CancelToken:
    """Cooperative cancellation flag, checked between entries."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ImportCancelled(KindleNotesError):
    """Raised inside the coordinator when the cancel token fires."""

    pass


@dataclass(frozen=True)
class ProgressUpdate:
    session_id: str
    stage: SessionStatus
    processed: int
    total: int


@dataclass
class ImportResult:
    """What the caller gets back from an import, whatever happened."""

    session_id: str
    status: SessionStatus
    statistics: ImportStatistics
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    canonical_ids: dict[str, str] = field(default_factory=dict)
    manual_review: list[DeduplicationResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == "completed"


@dataclass
class _WriteCounts:
    added: int = 0
    updated: int = 0
    associated: int = 0
    standalone: int = 0


@dataclass
class _PlannedEntry:
    """An entry plus what deduplication decided to do with it."""

    entry: RawAnnotationEntry
    result: DeduplicationResult
    note_id: str | None = None


class ImportSessionCoordinator:
    """Run imports against a record store.

    Example:
        >>> coordinator = ImportSessionCoordinator(store, CanonicalResolver(store, NullProvider()))
        >>> result = coordinator.run(Path("My Clippings.txt").read_text(), "My Clippings.txt")
        >>> result.statistics.notes_added
        42
    """

    def __init__(
        self,
        store: RecordStore,
        resolver: CanonicalResolver,
        cache: RecordCache | None = None,
        chunk_size: int | None = None,
        yield_fn: Callable[[], None] | None = None,
        max_errors: int | None = None,
        strict: bool = False,
    ):
        """Initialize coordinator.

        Args:
            store: Record store to read from and write to
            resolver: Canonical resolver for books new to the store
            cache: Read cache (default: a fresh RecordCache over ``store``)
            chunk_size: Entries processed between cooperative yields
                (default: IMPORT_CHUNK_SIZE)
            yield_fn: Called between chunks (default: ``time.sleep(0)``)
            max_errors: Malformed-block budget (default: IMPORT_MAX_ERRORS)
            strict: Disable the tokenizer's loose fallback patterns
        """
        self.store = store
        self.resolver = resolver
        self.cache = cache or RecordCache(store)
        self.chunk_size = max(1, chunk_size or env.import_chunk_size())
        self.yield_fn = yield_fn or (lambda: time.sleep(0))
        self.max_errors = max_errors if max_errors is not None else env.import_max_errors()
        self.strict = strict

    # -- running an import -----------------------------------------------

    def run(
        self,
        text: str,
        file_name: str,
        cancel_token: CancelToken | None = None,
        on_progress: Callable[[ProgressUpdate], None] | None = None,
    ) -> ImportResult:
        """Import one export file.

        Args:
            text: Export file contents
            file_name: Name recorded on the session
            cancel_token: Checked between entries; already written books stay
            on_progress: Receives a ProgressUpdate at each stage and chunk

        Returns:
            ImportResult with the final status and statistics
        """
        session = ImportSession(
            id=new_id("import"),
            file_name=file_name,
            file_size=len(text.encode("utf-8")),
            started_at=datetime.now(),
        )
        result = ImportResult(
            session_id=session.id, status=session.status, statistics=session.statistics
        )
        run = _ImportRun(self, session, result, text, cancel_token or CancelToken(), on_progress)

        try:
            self._save(session)
            run.execute()
            self._finish(session, "completed")
            logger.info(
                f"[green]✓[/green] Import of [bold]{file_name}[/bold] complete: "
                f"{session.statistics.notes_added} added, "
                f"{session.statistics.notes_updated} updated, "
                f"{session.statistics.duplicates_skipped} duplicate(s) skipped"
            )
        except ImportCancelled:
            logger.warning(f"Import of {file_name} cancelled")
            self._finish(session, "cancelled")
        except ErrorBudgetExceededError as e:
            session.statistics.entries_failed = len(e.errors)
            result.errors.extend(e.errors)
            logger.error(f"Import of {file_name} failed: too many malformed entries")
            self._finish(session, "failed", error=str(e))
        except PersistenceError as e:
            # Per-book failures are handled while storing; this is the store itself
            result.errors.append(str(e))
            logger.error(f"Import of {file_name} failed: {e}")
            self._finish(session, "failed", error=str(e))
        finally:
            self.cache.invalidate()

        result.status = session.status
        result.statistics = session.statistics
        return result

    def _save(self, session: ImportSession) -> None:
        with self.store.transaction():
            self.store.put_session(session)

    def _finish(
        self, session: ImportSession, status: SessionStatus, error: str | None = None
    ) -> None:
        session.transition(status, error=error)
        try:
            self._save(session)
        except PersistenceError as e:
            # The store is gone; the caller still gets the result
            logger.error(f"Could not record final state of import {session.id}: {e}")

    # -- session history -------------------------------------------------

    def list_sessions(
        self,
        status: SessionStatus | list[SessionStatus] | None = None,
        file_name: str | None = None,
        limit: int | None = None,
    ) -> list[ImportSession]:
        """List import sessions, most recent first."""
        statuses = [status] if isinstance(status, str) else status
        return list(self.store.iter_sessions(statuses=statuses, file_name=file_name, limit=limit))

    def rollback_session(self, session_id: str) -> dict[str, int]:
        """Remove everything an import session added.

        Deletes the notes the session created, deletes books the session
        created that are left empty, and refreshes note counts. Content
        updates the session made to older notes are not reverted. A session
        that had not finished is marked cancelled.

        Returns:
            Dictionary with notes_removed and books_removed

        Raises:
            ValueError: If the session does not exist
        """
        session = self.store.get_session(session_id)
        if session is None:
            raise ValueError(f"Import session {session_id} not found")

        books_removed = 0
        with self.store.transaction():
            removed = self.store.delete_notes_imported_from(session_id)

            for book in list(self.store.iter_books()):
                if book.id not in removed and book.import_source != session_id:
                    continue
                remaining = self.store.count_notes(book.id)
                if remaining == 0 and book.import_source == session_id:
                    self.store.delete_book(book.id)
                    books_removed += 1
                else:
                    self.store.put_book(
                        replace(book, note_count=remaining, updated_at=datetime.now())
                    )

            if not session.is_terminal:
                session.transition("cancelled", error="Rolled back")
                self.store.put_session(session)

        self.cache.invalidate()
        notes_removed = sum(removed.values())
        logger.info(
            f"Rolled back import {session_id}: "
            f"{notes_removed} note(s), {books_removed} book(s) removed"
        )
        return {"notes_removed": notes_removed, "books_removed": books_removed}


class _ImportRun:
    """State of one ``ImportSessionCoordinator.run`` call."""

    def __init__(
        self,
        coordinator: ImportSessionCoordinator,
        session: ImportSession,
        result: ImportResult,
        text: str,
        cancel_token: CancelToken,
        on_progress: Callable[[ProgressUpdate], None] | None,
    ):
        self.coordinator = coordinator
        self.store = coordinator.store
        self.cache = coordinator.cache
        self.session = session
        self.stats = session.statistics
        self.result = result
        self._text = text
        self.cancel_token = cancel_token
        self.on_progress = on_progress

    def execute(self) -> None:
        entries = self.parse()
        plan = self.deduplicate(entries)
        self.persist(plan)

    def _enter(self, stage: SessionStatus) -> None:
        self.session.transition(stage)
        self.coordinator._save(self.session)
        logger.debug(f"Import {self.session.id}: {stage}")

    def _check_cancelled(self) -> None:
        if self.cancel_token.cancelled:
            raise ImportCancelled(f"Import {self.session.id} cancelled")

    def _progress(self, processed: int, total: int) -> None:
        if self.on_progress is not None:
            self.on_progress(ProgressUpdate(self.session.id, self.session.status, processed, total))

    def _tick(self, processed: int, total: int) -> None:
        """Called after each entry: yield and report every chunk."""
        if processed % self.coordinator.chunk_size == 0:
            self._progress(processed, total)
            self.coordinator.yield_fn()

    # -- parsing ---------------------------------------------------------

    def parse(self) -> list[RawAnnotationEntry]:
        self._enter("parsing")
        self._progress(0, 0)

        tokens = tokenize(
            self._text,
            file_name=self.session.file_name,
            max_errors=self.coordinator.max_errors,
            strict=self.coordinator.strict,
        )
        self.stats.total_entries = tokens.blocks_found
        self.stats.entries_parsed = len(tokens.entries)
        self.stats.entries_failed = tokens.entries_failed
        self.stats.highlights = tokens.count("highlight")
        self.stats.notes = tokens.count("note")
        self.stats.bookmarks = tokens.count("bookmark")
        self.result.errors.extend(tokens.errors)
        self.result.warnings.extend(tokens.warnings)

        associate(tokens.entries)

        logger.info(
            f"Parsed {len(tokens.entries)} entries from {self.session.file_name} "
            f"({tokens.entries_failed} malformed)"
        )
        self._check_cancelled()
        return tokens.entries

    # -- deduplication ---------------------------------------------------

    def deduplicate(self, entries: list[RawAnnotationEntry]) -> list[_PlannedEntry]:
        self._enter("deduplicating")
        self._progress(0, len(entries))

        index = DeduplicationIndex.build(self.cache.notes(), self.cache.book_keys_by_id())
        engine = DeduplicationEngine(index)

        plan: list[_PlannedEntry] = []
        for processed, entry in enumerate(entries, start=1):
            self._check_cancelled()
            result = engine.classify(entry)
            planned = _PlannedEntry(entry=entry, result=result)

            if result.decision == "unique":
                planned.note_id = new_id("note")
                engine.register(entry, planned.note_id)
            elif result.decision == "content_update":
                planned.note_id = result.existing_note_id
                engine.register(entry, planned.note_id)
            elif result.decision == "exact_match":
                planned.note_id = result.existing_note_id
                self.stats.duplicates_skipped += 1
            else:
                self.stats.manual_review += 1
                self.result.manual_review.append(result)

            plan.append(planned)
            self._tick(processed, len(entries))

        logger.info(
            f"Deduplicated {len(entries)} entries: {self.stats.duplicates_skipped} duplicate(s), "
            f"{self.stats.manual_review} for manual review"
        )
        return plan

    # -- storing ---------------------------------------------------------

    def persist(self, plan: list[_PlannedEntry]) -> None:
        self._enter("storing")

        by_book: dict[str, list[_PlannedEntry]] = {}
        for planned in plan:
            by_book.setdefault(planned.entry.book_key, []).append(planned)

        processed = 0
        total = len(plan)
        self._progress(0, total)
        existing_books = self.cache.books_by_key()

        for book_key, book_plan in by_book.items():
            self._check_cancelled()
            first = book_plan[0].entry
            try:
                self._persist_book(book_key, first.title, first.author, book_plan, existing_books)
            except StoreUnavailableError:
                raise
            except PersistenceError as e:
                self.stats.books_failed += 1
                self.result.errors.append(f"{first.title}: {e}")
                logger.error(f"Failed to store '{first.title}': {e}")

            for _ in book_plan:
                processed += 1
                self._tick(processed, total)

        self._store_review_items(plan)

    def _persist_book(
        self,
        book_key: str,
        title: str,
        author: str | None,
        book_plan: list[_PlannedEntry],
        existing_books: dict[str, Book],
    ) -> None:
        book = existing_books.get(book_key)
        canonical_id = book.canonical_book_id if book else None

        if canonical_id is None:
            resolution = self.coordinator.resolver.resolve_book(
                title, author, session_id=self.session.id
            )
            canonical_id = resolution.canonical_id
            if resolution.band == "auto":
                self.stats.auto_linked += 1
            elif resolution.band == "confirm":
                self.stats.needs_confirmation += 1
            else:
                self.stats.provisional += 1
        self.result.canonical_ids[book_key] = canonical_id

        writes = [p for p in book_plan if p.result.decision in ("unique", "content_update")]
        if book is not None and not writes and book.canonical_book_id == canonical_id:
            return

        now = datetime.now()
        with self.store.transaction():
            if book is None:
                book = Book(
                    id=new_id("book"),
                    title=title,
                    author=author,
                    book_key=book_key,
                    created_at=now,
                    updated_at=now,
                    import_source=self.session.id,
                    canonical_book_id=canonical_id,
                )
                is_new = True
            else:
                book = replace(book, canonical_book_id=canonical_id, updated_at=now)
                is_new = False
            self.store.put_book(book)

            counts = self._write_notes(book, book_plan, now)

            book.note_count = self.store.count_notes(book.id)
            self.store.put_book(book)

        existing_books[book_key] = book
        self.stats.notes_added += counts.added
        self.stats.notes_updated += counts.updated
        self.stats.associated_notes += counts.associated
        self.stats.standalone_notes += counts.standalone
        if is_new:
            self.stats.books_added += 1
        elif counts.added or counts.updated:
            self.stats.books_updated += 1

    def _write_notes(
        self, book: Book, book_plan: list[_PlannedEntry], now: datetime
    ) -> _WriteCounts:
        """Write new and updated notes, then their highlight links.

        Notes are written before any link is set so a link can point at a
        highlight created in the same batch.

        Only notes written here are counted as associated or standalone;
        skipped duplicates and review items are not.
        """
        note_ids = {p.entry.temp_id: p.note_id for p in book_plan if p.note_id is not None}
        written: dict[str, tuple[Note, _PlannedEntry]] = {}
        counts = _WriteCounts()

        for planned in book_plan:
            entry = planned.entry
            decision = planned.result.decision
            if decision == "unique":
                note = Note(
                    id=planned.note_id,
                    book_id=book.id,
                    text=entry.content,
                    content_hash=content_hash(entry.content),
                    entry_type=entry.entry_type,
                    location=entry.location,
                    page=entry.page,
                    created_at=entry.timestamp,
                    updated_at=now,
                    imported_from=self.session.id,
                    parse_index=entry.parse_index,
                )
                counts.added += 1
            elif decision == "content_update":
                if planned.note_id in written:
                    # Same location repeated within this file: last one wins
                    note = written[planned.note_id][0]
                else:
                    note = self.store.get_note(planned.note_id)
                    if note is None:
                        raise PersistenceError(f"Note {planned.note_id} disappeared during import")
                    counts.updated += 1
                note.text = entry.content
                note.content_hash = content_hash(entry.content)
                note.location = entry.location
                note.page = entry.page if entry.page is not None else note.page
                note.updated_at = now
            else:
                continue

            self.store.put_note(replace(note, associated_highlight_id=None))
            written[note.id] = (note, planned)

        for note, planned in written.values():
            if note.entry_type != "note":
                continue
            target = self._association_target(book, note, planned, note_ids)
            note.associated_highlight_id = target
            if target is None:
                counts.standalone += 1
                continue
            self.store.put_note(note)
            counts.associated += 1

        return counts

    def _association_target(
        self, book: Book, note: Note, planned: _PlannedEntry, note_ids: dict[str, str]
    ) -> str | None:
        """Highlight id a written note should point at.

        A link found in this import wins. Otherwise an updated note keeps its
        previous link when that highlight still exists in the same book.
        """
        temp_target = planned.entry.associated_temp_id
        if temp_target is not None and temp_target in note_ids:
            return note_ids[temp_target]

        previous = note.associated_highlight_id
        if planned.result.decision != "content_update" or previous is None:
            return None
        highlight = self.store.get_note(previous)
        if highlight is None or highlight.book_id != book.id or highlight.entry_type != "highlight":
            return None
        return previous

    def _store_review_items(self, plan: list[_PlannedEntry]) -> None:
        review = [p for p in plan if p.result.decision == "manual_review"]
        if not review:
            return
        with self.store.transaction():
            for planned in review:
                entry = planned.entry
                self.store.add_review_item(
                    session_id=self.session.id,
                    book_key=entry.book_key,
                    parse_index=entry.parse_index,
                    entry_type=entry.entry_type,
                    text=entry.content,
                    existing_note_id=planned.result.existing_note_id,
                    similarity=planned.result.similarity,
                    reason=planned.result.conflict_reason,
                )
