"""Link notes to the highlights they comment on.

Kindle writes a note at the location where the highlighted passage ends, so
a note is associated with the highlight whose end location (or start, for
single-location highlights) equals the note's start location. File order is
not used: exports interleave notes and highlights irregularly.
"""

from collections import defaultdict
from dataclasses import dataclass, field

from common.logger import get_logger

from .models import Location, RawAnnotationEntry

logger = get_logger(__name__)


@dataclass
class AssociationResult:
    """Outcome of an association pass.

    Attributes:
        links: note temp_id -> highlight temp_id
        associated: Number of notes linked to a highlight
        standalone: Number of notes left without a highlight
    """

    links: dict[str, str] = field(default_factory=dict)
    associated: int = 0
    standalone: int = 0


# (start, end, parse index) sort key paired with its entry
_Ordered = tuple[tuple[int, int, int], RawAnnotationEntry]


def _location_order(location: Location, entry: RawAnnotationEntry) -> tuple[int, int, int]:
    return (location.start, location.end_or_start, entry.parse_index)


def associate(entries: list[RawAnnotationEntry]) -> AssociationResult:
    """Associate notes with location-adjacent highlights, per book.

    Rules:
        - Only entries of type "note" are linked, and only to "highlight"
          entries of the same book.
        - When several highlights end at the note's location, the one with
          the earliest start wins.
        - A highlight is claimed by at most one note in a pass; notes are
          visited in location order and a later note whose winning
          highlight is already claimed stays standalone.
        - Notes without a location are standalone.

    Sets ``associated_temp_id`` on every note (None for standalone notes).

    Args:
        entries: Tokenized entries, possibly spanning several books

    Returns:
        AssociationResult with the links and counts
    """
    by_book: dict[str, list[RawAnnotationEntry]] = defaultdict(list)
    for entry in entries:
        by_book[entry.book_key].append(entry)

    result = AssociationResult()

    for book_key, book_entries in by_book.items():
        highlights_by_end: dict[int, list[_Ordered]] = defaultdict(list)
        located_notes: list[_Ordered] = []

        for entry in book_entries:
            if entry.location is None:
                if entry.entry_type == "note":
                    entry.associated_temp_id = None
                    result.standalone += 1
                continue
            ordered = (_location_order(entry.location, entry), entry)
            if entry.entry_type == "highlight":
                highlights_by_end[entry.location.end_or_start].append(ordered)
            elif entry.entry_type == "note":
                located_notes.append(ordered)

        for candidates in highlights_by_end.values():
            candidates.sort(key=lambda item: item[0])
        located_notes.sort(key=lambda item: item[0])

        claimed: set[str] = set()
        for (note_start, _, _), note in located_notes:
            candidates = highlights_by_end.get(note_start)
            match = candidates[0][1] if candidates else None
            if match is None or match.temp_id in claimed:
                note.associated_temp_id = None
                result.standalone += 1
                continue

            claimed.add(match.temp_id)
            note.associated_temp_id = match.temp_id
            result.links[note.temp_id] = match.temp_id
            result.associated += 1

        notes = sum(1 for e in book_entries if e.entry_type == "note")
        logger.debug(f"{book_key}: {len(claimed)} of {notes} note(s) associated")

    return result
