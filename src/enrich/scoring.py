"""Weighted scoring of provider candidates against a raw (title, author, isbn).

    score = 0.60 * title_similarity + 0.25 * author_similarity + 0.15 * isbn_agreement

When the raw input has no ISBN the last term can never contribute, so the
score is taken over the title and author weights alone. Scores then fall in
one of three bands: ``auto`` (link without asking), ``confirm`` (link, but
flag for confirmation) and ``provisional`` (no trustworthy match).
"""

import re

from rapidfuzz.distance import Levenshtein

from .models import BookCandidate, MatchResolution, ScoredCandidate, ThresholdBand

# Scoring weights
TITLE_WEIGHT = 0.60
AUTHOR_WEIGHT = 0.25
ISBN_WEIGHT = 0.15

# Threshold bands
AUTO_LINK_THRESHOLD = 0.90
CONFIRM_THRESHOLD = 0.70

# Author score when neither side names an author
NEUTRAL_AUTHOR_SCORE = 0.5

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str | None) -> str:
    """Case-fold, drop punctuation and collapse whitespace.

    Example:
        >>> normalize_text("  Atomic Habits: An Easy & Proven Way ")
        'atomic habits an easy proven way'
    """
    if not text:
        return ""
    text = _PUNCTUATION.sub("", text.casefold())
    return _WHITESPACE.sub(" ", text).strip()


def normalize_isbn(isbn: str | None) -> str | None:
    if not isbn:
        return None
    digits = re.sub(r"[^0-9Xx]", "", isbn).upper()
    return digits or None


def string_similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity in [0, 1].

    Identical strings score 1; an empty string against a non-empty one
    scores 0.
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    return Levenshtein.normalized_similarity(a, b)


def author_similarity(author: str | None, candidate_authors: tuple[str, ...] | list[str]) -> float:
    """Best similarity between the input author and any candidate author."""
    normalized = normalize_text(author)
    others = [normalize_text(a) for a in candidate_authors if normalize_text(a)]
    if not normalized and not others:
        return NEUTRAL_AUTHOR_SCORE
    if not normalized or not others:
        return 0.0
    return max(string_similarity(normalized, other) for other in others)


def isbn_agrees(candidate: BookCandidate, isbn: str | None) -> bool:
    wanted = normalize_isbn(isbn)
    return wanted is not None and wanted == normalize_isbn(candidate.isbn_13)


def score_candidate(
    candidate: BookCandidate,
    title: str,
    author: str | None = None,
    isbn: str | None = None,
) -> float:
    """Score one candidate against the raw book.

    Args:
        candidate: Provider candidate
        title: Raw title from the export
        author: Raw author, if known
        isbn: Raw ISBN, if known

    Returns:
        Confidence in [0, 1]

    Example:
        >>> score_candidate(BookCandidate("v1", "Atomic Habits", ("James Clear",)),
        ...                 "Atomic Habits", "James Clear")
        1.0
    """
    title_score = string_similarity(normalize_text(title), normalize_text(candidate.title))
    author_score = author_similarity(author, candidate.authors)

    if normalize_isbn(isbn) is None:
        weighted = TITLE_WEIGHT * title_score + AUTHOR_WEIGHT * author_score
        return round(weighted / (TITLE_WEIGHT + AUTHOR_WEIGHT), 6)

    isbn_score = 1.0 if isbn_agrees(candidate, isbn) else 0.0
    return round(
        TITLE_WEIGHT * title_score + AUTHOR_WEIGHT * author_score + ISBN_WEIGHT * isbn_score, 6
    )


def rank_candidates(
    candidates: list[BookCandidate],
    title: str,
    author: str | None = None,
    isbn: str | None = None,
) -> list[ScoredCandidate]:
    """Score and sort candidates, best first.

    Sorted by score. Among equal scores an exact ISBN match comes first,
    then provider order.
    """
    scored = [
        ScoredCandidate(
            candidate=candidate,
            score=score_candidate(candidate, title, author, isbn),
            isbn_match=isbn_agrees(candidate, isbn),
        )
        for candidate in candidates
    ]
    return sorted(scored, key=lambda s: (-s.score, not s.isbn_match))


def threshold_band(score: float) -> ThresholdBand:
    if score >= AUTO_LINK_THRESHOLD:
        return "auto"
    if score >= CONFIRM_THRESHOLD:
        return "confirm"
    return "provisional"


def resolve_match(ranked: list[ScoredCandidate]) -> MatchResolution:
    """Pick the top ranked candidate and band it."""
    if not ranked:
        return MatchResolution(best=None, band="provisional", requires_confirmation=False)
    best = ranked[0]
    band = threshold_band(best.score)
    return MatchResolution(best=best, band=band, requires_confirmation=band == "confirm")
