"""Key-addressable record store for the import pipeline.

``RecordStore`` maps the pipeline's dataclasses onto the tables in
``load/db/schema_sqlite.sql`` and exposes get/put/iterate per record type
plus the secondary lookups the pipeline needs (normalized title, external
volume id, book + location). Database errors leave this module as
``PersistenceError``; a missing or unreachable database becomes
``StoreUnavailableError``.
"""

import json
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from common.errors import PersistenceError, StoreUnavailableError
from common.logger import get_logger
from extract.models import Location

from .db import ConnectionError as DBConnectionError
from .db import DatabaseAdapter, DatabaseError, Row
from .models import (
    Book,
    BookAlias,
    CanonicalBookIdentity,
    CanonicalLinkAudit,
    ImportSession,
    ImportStatistics,
    Note,
)

logger = get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


def _wrap_db_errors(func: Callable[P, R]) -> Callable[P, R]:
    """Translate adapter exceptions into pipeline persistence errors."""

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return func(*args, **kwargs)
        except DBConnectionError as e:
            raise StoreUnavailableError(str(e)) from e
        except DatabaseError as e:
            if "No active connection" in str(e):
                raise StoreUnavailableError(str(e)) from e
            raise PersistenceError(f"{func.__name__} failed: {e}") from e

    return wrapper


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class RecordStore:
    """Persistence for Book, Note, CanonicalBookIdentity, BookAlias,
    CanonicalLinkAudit and ImportSession records.

    Example:
        >>> from load.db import DatabaseConfig, create_database
        >>> store = RecordStore(create_database(DatabaseConfig(db_path=":memory:")))
        >>> store.open()
        >>> store.find_book_by_key("Atomic Habits|James Clear") is None
        True
    """

    def __init__(self, adapter: DatabaseAdapter):
        self.adapter = adapter

    # -- lifecycle -------------------------------------------------------

    @_wrap_db_errors
    def open(self) -> None:
        """Connect and make sure the schema exists."""
        self.adapter.connect()
        self.adapter.create_schema()

    def close(self) -> None:
        self.adapter.close()

    @_wrap_db_errors
    def commit(self) -> None:
        self.adapter.commit()

    @_wrap_db_errors
    def rollback(self) -> None:
        self.adapter.rollback()

    @contextmanager
    def transaction(self) -> Iterator["RecordStore"]:
        """Commit the enclosed writes together, or roll all of them back."""
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            self.close()
        return False

    # -- books -----------------------------------------------------------

    @_wrap_db_errors
    def get_book(self, book_id: str) -> Book | None:
        row = self.adapter.fetchone("SELECT * FROM books WHERE id = ?", (book_id,))
        return self._row_to_book(row) if row else None

    @_wrap_db_errors
    def find_book_by_key(self, book_key: str) -> Book | None:
        row = self.adapter.fetchone("SELECT * FROM books WHERE book_key = ?", (book_key,))
        return self._row_to_book(row) if row else None

    @_wrap_db_errors
    def iter_books(self) -> Iterator[Book]:
        rows = self.adapter.fetchall("SELECT * FROM books ORDER BY title, author")
        return (self._row_to_book(row) for row in rows)

    @_wrap_db_errors
    def put_book(self, book: Book) -> None:
        self.adapter.execute(
            """
            INSERT INTO books
            (id, title, author, book_key, canonical_book_id, tags, note_count,
             import_source, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                author = excluded.author,
                canonical_book_id = excluded.canonical_book_id,
                tags = excluded.tags,
                note_count = excluded.note_count,
                updated_at = excluded.updated_at
            """,
            (
                book.id,
                book.title,
                book.author,
                book.book_key,
                book.canonical_book_id,
                json.dumps(book.tags),
                book.note_count,
                book.import_source,
                _ts(book.created_at),
                _ts(book.updated_at),
            ),
        )

    @_wrap_db_errors
    def delete_book(self, book_id: str) -> None:
        self.adapter.execute("DELETE FROM books WHERE id = ?", (book_id,))

    @_wrap_db_errors
    def count_notes(self, book_id: str) -> int:
        return self.adapter.fetchscalar("SELECT COUNT(*) FROM notes WHERE book_id = ?", (book_id,))

    def _row_to_book(self, row: Row) -> Book:
        return Book(
            id=row["id"],
            title=row["title"],
            author=row["author"],
            book_key=row["book_key"],
            canonical_book_id=row["canonical_book_id"],
            tags=json.loads(row["tags"] or "[]"),
            note_count=row["note_count"],
            import_source=row["import_source"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    # -- notes -----------------------------------------------------------

    @_wrap_db_errors
    def get_note(self, note_id: str) -> Note | None:
        row = self.adapter.fetchone("SELECT * FROM notes WHERE id = ?", (note_id,))
        return self._row_to_note(row) if row else None

    @_wrap_db_errors
    def iter_notes(self, book_id: str | None = None) -> Iterator[Note]:
        if book_id is None:
            rows = self.adapter.fetchall("SELECT * FROM notes ORDER BY book_id, location_start")
        else:
            rows = self.adapter.fetchall(
                "SELECT * FROM notes WHERE book_id = ? ORDER BY location_start", (book_id,)
            )
        return (self._row_to_note(row) for row in rows)

    @_wrap_db_errors
    def find_notes_at_location(self, book_id: str, location_start: int) -> list[Note]:
        rows = self.adapter.fetchall(
            "SELECT * FROM notes WHERE book_id = ? AND location_start = ?",
            (book_id, location_start),
        )
        return [self._row_to_note(row) for row in rows]

    @_wrap_db_errors
    def put_note(self, note: Note) -> None:
        location = note.location
        self.adapter.execute(
            """
            INSERT INTO notes
            (id, book_id, text, content_hash, entry_type, location_start, location_end,
             page, tags, associated_highlight_id, imported_from, parse_index,
             created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                text = excluded.text,
                content_hash = excluded.content_hash,
                location_start = excluded.location_start,
                location_end = excluded.location_end,
                page = excluded.page,
                tags = excluded.tags,
                associated_highlight_id = excluded.associated_highlight_id,
                updated_at = excluded.updated_at
            """,
            (
                note.id,
                note.book_id,
                note.text,
                note.content_hash,
                note.entry_type,
                location.start if location else None,
                location.end if location else None,
                note.page,
                json.dumps(note.tags),
                note.associated_highlight_id,
                note.imported_from,
                note.parse_index,
                _ts(note.created_at),
                _ts(note.updated_at),
            ),
        )

    @_wrap_db_errors
    def delete_notes_imported_from(self, session_id: str) -> dict[str, int]:
        """Delete every note created by an import session.

        Returns:
            Mapping of book id -> number of notes removed from that book
        """
        rows = self.adapter.fetchall(
            """
            SELECT book_id, COUNT(*) AS removed FROM notes
            WHERE imported_from = ? GROUP BY book_id
            """,
            (session_id,),
        )
        self.adapter.execute("DELETE FROM notes WHERE imported_from = ?", (session_id,))
        return {row["book_id"]: row["removed"] for row in rows}

    def _row_to_note(self, row: Row) -> Note:
        location = None
        if row["location_start"] is not None:
            location = Location(row["location_start"], row["location_end"])
        return Note(
            id=row["id"],
            book_id=row["book_id"],
            text=row["text"],
            content_hash=row["content_hash"],
            entry_type=row["entry_type"],
            location=location,
            page=row["page"],
            tags=json.loads(row["tags"] or "[]"),
            associated_highlight_id=row["associated_highlight_id"],
            imported_from=row["imported_from"],
            parse_index=row["parse_index"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    # -- canonical books -------------------------------------------------

    @_wrap_db_errors
    def get_canonical(self, canonical_id: str) -> CanonicalBookIdentity | None:
        row = self.adapter.fetchone("SELECT * FROM canonical_books WHERE id = ?", (canonical_id,))
        return self._row_to_canonical(row) if row else None

    @_wrap_db_errors
    def find_canonical_by_volume_id(self, volume_id: str) -> CanonicalBookIdentity | None:
        row = self.adapter.fetchone(
            "SELECT * FROM canonical_books WHERE external_volume_id = ?", (volume_id,)
        )
        return self._row_to_canonical(row) if row else None

    @_wrap_db_errors
    def find_canonical_by_normalized_title(
        self, normalized_title: str
    ) -> list[CanonicalBookIdentity]:
        rows = self.adapter.fetchall(
            "SELECT * FROM canonical_books WHERE normalized_title = ? ORDER BY created_at",
            (normalized_title,),
        )
        return [self._row_to_canonical(row) for row in rows]

    @_wrap_db_errors
    def iter_canonical(self) -> Iterator[CanonicalBookIdentity]:
        rows = self.adapter.fetchall("SELECT * FROM canonical_books ORDER BY title")
        return (self._row_to_canonical(row) for row in rows)

    @_wrap_db_errors
    def put_canonical(self, canonical: CanonicalBookIdentity) -> None:
        """Insert or update a canonical record.

        Raises:
            PersistenceError: If the update would replace an existing external
                volume id with a different one
        """
        existing = self.adapter.fetchone(
            "SELECT external_volume_id FROM canonical_books WHERE id = ?", (canonical.id,)
        )
        if (
            existing
            and existing["external_volume_id"]
            and canonical.external_volume_id
            and existing["external_volume_id"] != canonical.external_volume_id
        ):
            raise PersistenceError(
                f"Canonical book {canonical.id} is already linked to volume "
                f"{existing['external_volume_id']}, refusing {canonical.external_volume_id}"
            )

        self.adapter.execute(
            """
            INSERT INTO canonical_books
            (id, title, normalized_title, authors, external_volume_id, isbn_13, cover_url,
             match_status, match_source, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                normalized_title = excluded.normalized_title,
                authors = excluded.authors,
                external_volume_id = COALESCE(canonical_books.external_volume_id,
                                              excluded.external_volume_id),
                isbn_13 = excluded.isbn_13,
                cover_url = excluded.cover_url,
                match_status = excluded.match_status,
                match_source = excluded.match_source,
                updated_at = excluded.updated_at
            """,
            (
                canonical.id,
                canonical.title,
                canonical.normalized_title,
                json.dumps(canonical.authors),
                canonical.external_volume_id,
                canonical.isbn_13,
                canonical.cover_url,
                canonical.match_status,
                canonical.match_source,
                _ts(canonical.created_at),
                _ts(canonical.updated_at),
            ),
        )

    def _row_to_canonical(self, row: Row) -> CanonicalBookIdentity:
        return CanonicalBookIdentity(
            id=row["id"],
            title=row["title"],
            normalized_title=row["normalized_title"],
            authors=json.loads(row["authors"] or "[]"),
            external_volume_id=row["external_volume_id"],
            isbn_13=row["isbn_13"],
            cover_url=row["cover_url"],
            match_status=row["match_status"],
            match_source=row["match_source"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    # -- aliases ---------------------------------------------------------

    @_wrap_db_errors
    def find_alias_by_key(self, normalized_key: str) -> BookAlias | None:
        row = self.adapter.fetchone(
            "SELECT * FROM book_aliases WHERE normalized_key = ?", (normalized_key,)
        )
        return self._row_to_alias(row) if row else None

    @_wrap_db_errors
    def find_alias_by_normalized_title(self, normalized_title: str) -> BookAlias | None:
        row = self.adapter.fetchone(
            """
            SELECT * FROM book_aliases WHERE normalized_title = ?
            ORDER BY confidence DESC, created_at LIMIT 1
            """,
            (normalized_title,),
        )
        return self._row_to_alias(row) if row else None

    @_wrap_db_errors
    def aliases_for_canonical(self, canonical_id: str) -> list[BookAlias]:
        rows = self.adapter.fetchall(
            "SELECT * FROM book_aliases WHERE canonical_book_id = ? ORDER BY created_at",
            (canonical_id,),
        )
        return [self._row_to_alias(row) for row in rows]

    @_wrap_db_errors
    def put_alias(self, alias: BookAlias) -> None:
        self.adapter.execute(
            """
            INSERT INTO book_aliases
            (id, normalized_key, normalized_title, raw_title, raw_author, canonical_book_id,
             confidence, resolution, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(normalized_key) DO UPDATE SET
                canonical_book_id = excluded.canonical_book_id,
                confidence = excluded.confidence,
                resolution = excluded.resolution,
                updated_at = excluded.updated_at
            """,
            (
                alias.id,
                alias.normalized_key,
                alias.normalized_title,
                alias.raw_title,
                alias.raw_author,
                alias.canonical_book_id,
                alias.confidence,
                alias.resolution,
                _ts(alias.created_at),
                _ts(alias.updated_at),
            ),
        )

    def _row_to_alias(self, row: Row) -> BookAlias:
        return BookAlias(
            id=row["id"],
            normalized_key=row["normalized_key"],
            normalized_title=row["normalized_title"],
            raw_title=row["raw_title"],
            raw_author=row["raw_author"],
            canonical_book_id=row["canonical_book_id"],
            confidence=row["confidence"],
            resolution=row["resolution"],
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    # -- audits ----------------------------------------------------------

    @_wrap_db_errors
    def add_audit(
        self,
        raw_key: str,
        canonical_id: str,
        audit: CanonicalLinkAudit,
        session_id: str | None = None,
    ) -> None:
        self.adapter.execute(
            """
            INSERT INTO canonical_link_audits
            (raw_key, canonical_book_id, session_id, source_flow, resolution_mode,
             confidence, provider, provider_candidate_id, resolved_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                raw_key,
                canonical_id,
                session_id,
                audit.source_flow,
                audit.resolution_mode,
                audit.confidence,
                audit.provider,
                audit.provider_candidate_id,
                _ts(audit.resolved_at),
            ),
        )

    @_wrap_db_errors
    def audits_for_canonical(self, canonical_id: str) -> list[CanonicalLinkAudit]:
        rows = self.adapter.fetchall(
            "SELECT * FROM canonical_link_audits WHERE canonical_book_id = ? ORDER BY id",
            (canonical_id,),
        )
        return [
            CanonicalLinkAudit(
                source_flow=row["source_flow"],
                resolution_mode=row["resolution_mode"],
                confidence=row["confidence"],
                provider=row["provider"],
                provider_candidate_id=row["provider_candidate_id"],
                resolved_at=_dt(row["resolved_at"]),
            )
            for row in rows
        ]

    @_wrap_db_errors
    def canonical_status_counts(self) -> dict[str, int]:
        rows = self.adapter.fetchall(
            "SELECT match_status, COUNT(*) AS count FROM canonical_books GROUP BY match_status"
        )
        return {row["match_status"]: row["count"] for row in rows}

    @_wrap_db_errors
    def audit_mode_counts(self) -> dict[str, int]:
        rows = self.adapter.fetchall(
            """
            SELECT resolution_mode, COUNT(*) AS count
            FROM canonical_link_audits GROUP BY resolution_mode
            """
        )
        return {row["resolution_mode"]: row["count"] for row in rows}

    # -- import sessions -------------------------------------------------

    @_wrap_db_errors
    def get_session(self, session_id: str) -> ImportSession | None:
        row = self.adapter.fetchone("SELECT * FROM import_sessions WHERE id = ?", (session_id,))
        return self._row_to_session(row) if row else None

    @_wrap_db_errors
    def put_session(self, session: ImportSession) -> None:
        self.adapter.execute(
            """
            INSERT INTO import_sessions
            (id, file_name, file_size, status, started_at, completed_at, error, statistics)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                status = excluded.status,
                completed_at = excluded.completed_at,
                error = excluded.error,
                statistics = excluded.statistics
            """,
            (
                session.id,
                session.file_name,
                session.file_size,
                session.status,
                _ts(session.started_at),
                _ts(session.completed_at),
                session.error,
                json.dumps(session.statistics.to_dict()),
            ),
        )

    @_wrap_db_errors
    def iter_sessions(
        self,
        statuses: list[str] | None = None,
        file_name: str | None = None,
        limit: int | None = None,
    ) -> Iterator[ImportSession]:
        """Iterate sessions, most recent first, with optional filters."""
        query = "SELECT * FROM import_sessions"
        clauses: list[str] = []
        params: list[Any] = []
        if statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in statuses)})")
            params.extend(statuses)
        if file_name:
            clauses.append("LOWER(file_name) LIKE ?")
            params.append(f"%{file_name.lower()}%")
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY started_at DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        rows = self.adapter.fetchall(query, tuple(params))
        return (self._row_to_session(row) for row in rows)

    def _row_to_session(self, row: Row) -> ImportSession:
        return ImportSession(
            id=row["id"],
            file_name=row["file_name"],
            file_size=row["file_size"],
            status=row["status"],
            started_at=_dt(row["started_at"]),
            completed_at=_dt(row["completed_at"]),
            error=row["error"],
            statistics=ImportStatistics.from_dict(json.loads(row["statistics"] or "{}")),
        )

    # -- manual review queue ---------------------------------------------

    @_wrap_db_errors
    def add_review_item(
        self,
        session_id: str,
        book_key: str,
        parse_index: int,
        entry_type: str,
        text: str,
        existing_note_id: str | None,
        similarity: float,
        reason: str | None,
    ) -> None:
        self.adapter.execute(
            """
            INSERT INTO review_queue
            (session_id, book_key, parse_index, entry_type, text, existing_note_id,
             similarity, reason, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                session_id,
                book_key,
                parse_index,
                entry_type,
                text,
                existing_note_id,
                similarity,
                reason,
                _ts(datetime.now()),
            ),
        )

    @_wrap_db_errors
    def review_items(self, session_id: str | None = None) -> list[Row]:
        if session_id is None:
            return self.adapter.fetchall("SELECT * FROM review_queue ORDER BY id")
        return self.adapter.fetchall(
            "SELECT * FROM review_queue WHERE session_id = ? ORDER BY id", (session_id,)
        )


def open_store(db_path: str | None = None) -> RecordStore:
    """Open a record store on ``db_path``, or on DATABASE_PATH when omitted.

    Raises:
        StoreUnavailableError: If the database cannot be opened
    """
    from .db import DatabaseConfig, create_database, get_adapter

    adapter = create_database(DatabaseConfig(db_path=db_path)) if db_path else get_adapter()
    store = RecordStore(adapter)
    store.open()
    return store
