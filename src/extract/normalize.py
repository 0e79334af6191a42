"""Timestamp, location and page normalization for clippings metadata.

Parsers in this module never raise on bad input. They return a fallback
value together with a warning message so the tokenizer can keep the entry
and report the degradation.
"""

import re
from datetime import datetime

from dateutil import parser as dateutil_parser

from common.errors import UnparseableDateError, UnparseableLocationError

from .models import Location

# Kindle firmware and locale variants seen in exports, most common first
DATE_FORMATS: tuple[str, ...] = (
    "%A, %B %d, %Y %I:%M:%S %p",
    "%A, %B %d, %Y at %I:%M:%S %p",
    "%B %d, %Y %I:%M:%S %p",
    "%A, %d %B %Y %H:%M:%S",
    "%m/%d/%Y %I:%M:%S %p",
    "%Y-%m-%d %H:%M:%S",
)

LOCATION_PATTERN = re.compile(r"^(\d+)(?:\s*-\s*(\d+))?$")


def parse_timestamp(text: str | None, now: datetime | None = None) -> tuple[datetime, str | None]:
    """Parse the "Added on" text of a metadata line.

    Args:
        text: Raw date text, e.g. "Monday, January 1, 2024 10:00:00 AM"
        now: Processing time used as fallback (defaults to datetime.now())

    Returns:
        Tuple of (timestamp, warning). The warning is None on success.

    Example:
        >>> parse_timestamp("Monday, January 1, 2024 10:00:00 AM")
        (datetime.datetime(2024, 1, 1, 10, 0), None)
    """
    fallback = now or datetime.now()
    if not text or not text.strip():
        return fallback, str(UnparseableDateError("Missing date, using processing time"))

    candidate = text.strip()

    for date_format in DATE_FORMATS:
        try:
            return datetime.strptime(candidate, date_format), None
        except ValueError:
            continue

    try:
        return datetime.fromisoformat(candidate.replace("Z", "+00:00")), None
    except ValueError:
        pass

    # Tolerant fallback for locale drift ("15 December 2024 15:45", etc.)
    try:
        return dateutil_parser.parse(candidate), None
    except (ValueError, OverflowError):
        pass

    message = str(UnparseableDateError(f"Could not parse date '{candidate}', using processing time"))
    return fallback, message


def parse_location(text: str | None) -> tuple[Location | None, str | None]:
    """Parse a location of the form ``N`` or ``N-M``.

    Kindle abbreviates ranges that share leading digits ("1420-35" means
    1420 to 1435); such ranges are expanded.

    Returns:
        Tuple of (location, warning). Location is None when text is absent
        or unparseable; the warning is only set for unparseable text.

    Example:
        >>> parse_location("512-514")
        (Location(start=512, end=514), None)
        >>> parse_location("1420-35")
        (Location(start=1420, end=1435), None)
    """
    if text is None or not text.strip():
        return None, None

    match = LOCATION_PATTERN.match(text.strip())
    if not match:
        return None, str(UnparseableLocationError(f"Could not parse location '{text.strip()}'"))

    start_text, end_text = match.group(1), match.group(2)
    start = int(start_text)
    if end_text is None:
        return Location(start), None

    end = int(end_text)
    if end < start and len(end_text) < len(start_text):
        end = int(start_text[: len(start_text) - len(end_text)] + end_text)

    if end < start:
        return Location(start), str(
            UnparseableLocationError(f"Inverted location range '{text.strip()}', keeping start")
        )

    return Location(start, end), None


def parse_page(text: str | None) -> int | None:
    """Parse a page number, ignoring roman numerals and other labels."""
    if text is None:
        return None
    match = re.match(r"^\s*(\d+)", text)
    return int(match.group(1)) if match else None
