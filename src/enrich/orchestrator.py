"""High-level orchestration for canonical book resolution.

Every raw (title, author) seen in an import, or typed in by hand, resolves to
one ``CanonicalBookIdentity``:

1. An existing alias for the same normalized key (or title) is reused and no
   provider call is made.
2. Otherwise the metadata provider is searched. No candidates, or an
   unavailable provider, gives a provisional record.
3. Otherwise candidates are scored and the band decides the outcome.

Each resolution writes a ``CanonicalLinkAudit``. Failures for one book fall
back to the provisional path so a batch is never aborted by a single title.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime

from common.constants import SOURCE_FLOW_IMPORT
from common.errors import StoreUnavailableError
from common.logger import get_logger
from extract.item_id import new_id
from extract.models import make_book_key
from load.models import (
    BookAlias,
    CanonicalBookIdentity,
    CanonicalLinkAudit,
    MatchSource,
    MatchStatus,
    Resolution,
    SourceFlow,
)
from load.store import RecordStore

from .audit import create_alias_reuse_audit, create_audit_from_band
from .clients.base import MetadataProvider
from .models import MatchResolution, ScoredCandidate, ThresholdBand
from .scoring import normalize_text, rank_candidates, resolve_match

logger = get_logger(__name__)

# band -> (match status, match source, alias resolution)
BAND_OUTCOMES: dict[ThresholdBand, tuple[MatchStatus, MatchSource, Resolution]] = {
    "auto": ("verified", "provider", "auto"),
    "confirm": ("user-confirmed", "provider", "user-confirmed"),
    "provisional": ("unverified", "fallback", "provisional"),
}

RESOLUTION_BANDS: dict[str, ThresholdBand] = {
    "auto": "auto",
    "user-confirmed": "confirm",
    "provisional": "provisional",
}


def alias_key(title: str, author: str | None) -> str:
    """Normalized alias key for a raw (title, author) pair.

    Example:
        >>> alias_key("Atomic Habits: Tiny Changes", "James Clear")
        'atomic habits tiny changes|james clear'
    """
    return f"{normalize_text(title)}|{normalize_text(author)}"


def resolve_or_create_canonical(
    store: RecordStore,
    title: str,
    match_status: MatchStatus,
    match_source: MatchSource,
    authors: list[str] | None = None,
    external_volume_id: str | None = None,
    isbn_13: str | None = None,
    cover_url: str | None = None,
) -> CanonicalBookIdentity:
    """Find the canonical record for a book, or create it.

    Lookup order:
        - Same external volume id: reuse, refreshing cover/ISBN and upgrading
          the status to verified when the new match is verified.
        - Same normalized title on a record without a volume id, while this
          match has one: upgrade that provisional record in place.
        - Same normalized title otherwise: reuse as is.
        - Nothing found: create a new record.

    Returns:
        The stored canonical record
    """
    now = datetime.now()

    if external_volume_id:
        existing = store.find_canonical_by_volume_id(external_volume_id)
        if existing:
            updated = replace(
                existing,
                cover_url=cover_url or existing.cover_url,
                isbn_13=isbn_13 or existing.isbn_13,
                match_status="verified" if match_status == "verified" else existing.match_status,
                updated_at=now,
            )
            store.put_canonical(updated)
            return updated

    normalized = normalize_text(title)
    same_title = store.find_canonical_by_normalized_title(normalized)
    existing = same_title[0] if same_title else None

    if existing and not existing.external_volume_id and external_volume_id:
        logger.debug(f"Upgrading provisional canonical '{existing.title}' to {external_volume_id}")
        upgraded = replace(
            existing,
            external_volume_id=external_volume_id,
            cover_url=cover_url or existing.cover_url,
            isbn_13=isbn_13 or existing.isbn_13,
            authors=list(authors) if authors else existing.authors,
            match_status=match_status,
            match_source=match_source,
            updated_at=now,
        )
        store.put_canonical(upgraded)
        return upgraded

    if existing:
        return existing

    canonical = CanonicalBookIdentity(
        id=new_id("canonical"),
        title=title,
        normalized_title=normalized,
        authors=list(authors or []),
        external_volume_id=external_volume_id,
        isbn_13=isbn_13,
        cover_url=cover_url,
        match_status=match_status,
        match_source=match_source,
        created_at=now,
        updated_at=now,
    )
    store.put_canonical(canonical)
    return canonical


@dataclass
class CanonicalResolution:
    """How one raw book was resolved."""

    book_key: str
    canonical_id: str
    band: ThresholdBand
    match_status: MatchStatus
    confidence: float
    audit: CanonicalLinkAudit
    alias_reused: bool = False


@dataclass
class CanonicalImportResult:
    """Resolutions for every book of one import."""

    canonical_ids: dict[str, str] = field(default_factory=dict)
    audits: dict[str, CanonicalLinkAudit] = field(default_factory=dict)
    auto_linked: int = 0
    needs_confirmation: int = 0
    provisional: int = 0
    total: int = 0

    def add(self, resolution: CanonicalResolution) -> None:
        self.canonical_ids[resolution.book_key] = resolution.canonical_id
        self.audits[resolution.book_key] = resolution.audit
        self.total += 1
        if resolution.band == "auto":
            self.auto_linked += 1
        elif resolution.band == "confirm":
            self.needs_confirmation += 1
        else:
            self.provisional += 1

    @property
    def summary(self) -> dict[str, int]:
        return {
            "auto_linked": self.auto_linked,
            "needs_confirmation": self.needs_confirmation,
            "provisional": self.provisional,
            "total": self.total,
        }


@dataclass
class ManualProposal:
    """Ranked candidates offered to a user entering a book by hand.

    ``canonical_id`` is already set when the best match was confident enough
    to be linked without asking.
    """

    title: str
    author: str | None
    isbn: str | None
    ranked: list[ScoredCandidate]
    resolution: MatchResolution
    provider_available: bool = True
    error: str | None = None
    canonical_id: str | None = None

    @property
    def needs_decision(self) -> bool:
        return self.canonical_id is None


class CanonicalResolver:
    """Resolve raw books to canonical identities.

    Example:
        >>> resolver = CanonicalResolver(store, GoogleBooksClient())
        >>> result = resolver.resolve_books([("Atomic Habits", "James Clear")])
        >>> result.summary
        {'auto_linked': 1, 'needs_confirmation': 0, 'provisional': 0, 'total': 1}
    """

    def __init__(
        self,
        store: RecordStore,
        provider: MetadataProvider,
        source_flow: SourceFlow = SOURCE_FLOW_IMPORT,
    ):
        self.store = store
        self.provider = provider
        self.source_flow = source_flow

    # -- import flow -----------------------------------------------------

    def resolve_books(
        self, books: Iterable[tuple[str, str | None]], session_id: str | None = None
    ) -> CanonicalImportResult:
        """Resolve every (title, author) pair, one at a time.

        Raises:
            StoreUnavailableError: If the store goes away; every other
                per-book failure degrades to a provisional record
        """
        result = CanonicalImportResult()
        books = list(books)
        for i, (title, author) in enumerate(books):
            by = author or "unknown author"
            logger.info(f"[{i + 1}/{len(books)}] Resolving '{title}' by {by}")
            result.add(self.resolve_book(title, author, session_id=session_id))

        logger.info(
            f"[green]✓[/green] Canonical matching complete: "
            f"{result.auto_linked} auto-linked, "
            f"{result.needs_confirmation} need confirmation, "
            f"{result.provisional} provisional"
        )
        return result

    def resolve_book(
        self,
        title: str,
        author: str | None = None,
        isbn: str | None = None,
        session_id: str | None = None,
    ) -> CanonicalResolution:
        """Resolve one raw book without ever blocking on the user.

        Each book is committed on its own so one failure cannot undo
        another book's resolution.
        """
        try:
            with self.store.transaction():
                return self._resolve(title, author, isbn, session_id)
        except StoreUnavailableError:
            raise
        except Exception as e:
            logger.warning(f"Canonical matching failed for '{title}': {e}")
            with self.store.transaction():
                return self._link_provisional(title, author, session_id)

    def _resolve(
        self, title: str, author: str | None, isbn: str | None, session_id: str | None
    ) -> CanonicalResolution:
        alias = self.store.find_alias_by_key(alias_key(title, author))
        if alias is None:
            alias = self.store.find_alias_by_normalized_title(normalize_text(title))
        if alias is not None:
            return self._reuse_alias(alias, title, author, session_id)

        search = self.provider.search(title, author)
        if not search.available:
            logger.warning(f"Provider unavailable for '{title}', creating provisional record")
            return self._link_provisional(title, author, session_id)

        match = resolve_match(rank_candidates(search.candidates, title, author, isbn))
        best = match.best
        if best is None:
            return self._link_provisional(title, author, session_id)

        if match.band == "provisional":
            logger.info(
                f"Best match for '{title}' scored {best.score:.2f}, creating provisional record"
            )
            return self._link_provisional(title, author, session_id, best=best)

        return self._link_candidate(title, author, best, match.band, session_id)

    def _reuse_alias(
        self, alias: BookAlias, title: str, author: str | None, session_id: str | None
    ) -> CanonicalResolution:
        book_key = make_book_key(title, author)
        canonical = self.store.get_canonical(alias.canonical_book_id)
        key = alias_key(title, author)
        if alias.normalized_key != key:
            # Variant spelling of a known title: remember it under its own key
            self._put_alias(
                title, author, alias.canonical_book_id, alias.confidence, alias.resolution
            )

        audit = create_alias_reuse_audit(self.source_flow, alias.resolution, alias.confidence)
        self.store.add_audit(book_key, alias.canonical_book_id, audit, session_id)
        logger.debug(f"Alias hit for '{title}' -> {alias.canonical_book_id}")

        band = RESOLUTION_BANDS[alias.resolution]
        return CanonicalResolution(
            book_key=book_key,
            canonical_id=alias.canonical_book_id,
            band=band,
            match_status=canonical.match_status if canonical else BAND_OUTCOMES[band][0],
            confidence=alias.confidence,
            audit=audit,
            alias_reused=True,
        )

    def _link_candidate(
        self,
        title: str,
        author: str | None,
        best: ScoredCandidate,
        band: ThresholdBand,
        session_id: str | None,
    ) -> CanonicalResolution:
        match_status, match_source, resolution = BAND_OUTCOMES[band]
        candidate = best.candidate
        canonical = resolve_or_create_canonical(
            self.store,
            title=candidate.title,
            authors=list(candidate.authors),
            external_volume_id=candidate.candidate_id,
            isbn_13=candidate.isbn_13,
            cover_url=candidate.cover_url,
            match_status=match_status,
            match_source=match_source,
        )
        self._put_alias(title, author, canonical.id, best.score, resolution)

        audit = create_audit_from_band(
            self.source_flow, band, best.score, candidate.candidate_id, self.provider.name
        )
        book_key = make_book_key(title, author)
        self.store.add_audit(book_key, canonical.id, audit, session_id)

        logger.debug(f"'{title}' -> '{candidate.title}' ({band}, {best.score:.2f})")
        return CanonicalResolution(
            book_key=book_key,
            canonical_id=canonical.id,
            band=band,
            match_status=canonical.match_status,
            confidence=best.score,
            audit=audit,
        )

    def _link_provisional(
        self,
        title: str,
        author: str | None,
        session_id: str | None,
        best: ScoredCandidate | None = None,
    ) -> CanonicalResolution:
        canonical = resolve_or_create_canonical(
            self.store,
            title=title,
            authors=[author] if author else None,
            match_status="unverified",
            match_source="fallback",
        )
        confidence = best.score if best else 0.0
        self._put_alias(title, author, canonical.id, confidence, "provisional")

        audit = create_audit_from_band(
            self.source_flow,
            "provisional",
            confidence,
            best.candidate.candidate_id if best else None,
            self.provider.name,
        )
        book_key = make_book_key(title, author)
        self.store.add_audit(book_key, canonical.id, audit, session_id)

        return CanonicalResolution(
            book_key=book_key,
            canonical_id=canonical.id,
            band="provisional",
            match_status=canonical.match_status,
            confidence=confidence,
            audit=audit,
        )

    def _put_alias(
        self,
        title: str,
        author: str | None,
        canonical_id: str,
        confidence: float,
        resolution: Resolution,
    ) -> None:
        now = datetime.now()
        key = alias_key(title, author)
        existing = self.store.find_alias_by_key(key)
        self.store.put_alias(
            BookAlias(
                id=existing.id if existing else new_id("alias"),
                normalized_key=key,
                normalized_title=normalize_text(title),
                raw_title=title,
                raw_author=author,
                canonical_book_id=canonical_id,
                confidence=confidence,
                resolution=resolution,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
        )

    # -- manual entry flow -----------------------------------------------

    def propose(
        self, title: str, author: str | None = None, isbn: str | None = None
    ) -> ManualProposal:
        """Search and rank candidates for a book typed in by hand.

        Nothing is persisted unless the best candidate lands in the auto
        band; otherwise the caller must answer with ``confirm_selection``
        or ``confirm_none``.
        """
        search = self.provider.search(title, author)
        ranked = rank_candidates(search.candidates, title, author, isbn)
        proposal = ManualProposal(
            title=title,
            author=author,
            isbn=isbn,
            ranked=ranked,
            resolution=resolve_match(ranked),
            provider_available=search.available,
            error=search.error,
        )

        best = proposal.resolution.best
        if proposal.resolution.band == "auto" and best is not None:
            with self.store.transaction():
                resolution = self._link_candidate(title, author, best, "auto", session_id=None)
            proposal.canonical_id = resolution.canonical_id
        return proposal

    def confirm_selection(self, proposal: ManualProposal, candidate_id: str) -> CanonicalResolution:
        """Persist the candidate the user picked as a user-confirmed match.

        Raises:
            ValueError: If ``candidate_id`` was not among the proposal's candidates
        """
        for scored in proposal.ranked:
            if scored.candidate.candidate_id == candidate_id:
                break
        else:
            raise ValueError(f"Candidate '{candidate_id}' is not part of this proposal")

        with self.store.transaction():
            resolution = self._link_candidate(
                proposal.title, proposal.author, scored, "confirm", session_id=None
            )
        proposal.canonical_id = resolution.canonical_id
        return resolution

    def confirm_none(self, proposal: ManualProposal) -> CanonicalResolution:
        """Persist a provisional record because the user rejected every candidate."""
        with self.store.transaction():
            resolution = self._link_provisional(
                proposal.title, proposal.author, session_id=None, best=proposal.resolution.best
            )
        proposal.canonical_id = resolution.canonical_id
        return resolution
