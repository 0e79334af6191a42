"""Data models for canonical book matching."""

from dataclasses import dataclass, field
from typing import Literal

ThresholdBand = Literal["auto", "confirm", "provisional"]


@dataclass(frozen=True)
class BookCandidate:
    """One book returned by a metadata provider.

    Attributes:
        candidate_id: Provider's identifier (Google volume id, Open Library work id)
        title: Title as the provider reports it
        authors: Author names, possibly empty
        isbn_13: ISBN-13 if the provider returned one
        cover_url: Cover image URL if available
        source: Provider name, e.g. "google-books"
    """

    candidate_id: str
    title: str
    authors: tuple[str, ...] = ()
    isbn_13: str | None = None
    cover_url: str | None = None
    source: str = "google-books"


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate with its match confidence against one raw book."""

    candidate: BookCandidate
    score: float
    isbn_match: bool = False


@dataclass(frozen=True)
class MatchResolution:
    """Best candidate and the band its score falls in."""

    best: ScoredCandidate | None
    band: ThresholdBand
    requires_confirmation: bool = False


@dataclass
class ProviderResult:
    """What a provider search produced. Failures are data, not exceptions."""

    candidates: list[BookCandidate] = field(default_factory=list)
    available: bool = True
    error: str | None = None
