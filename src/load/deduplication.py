"""Classify incoming annotations against previously imported notes.

Each entry is keyed three ways:

    exact key     (book_key, location.start, kind, content_hash)
    location key  (book_key, location.start, kind)
    content key   (book_key, kind, content_hash)   entries without a location

An exact-key hit is a duplicate. A location-key hit with a different hash is
a content update of the note at that location. Entries without a location
can only be matched on content; near-identical text goes to manual review
rather than being guessed at.

The index is built once per import and updated with ``register`` as entries
are accepted, so repeated blocks inside a single export are caught as well.
"""

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from common.constants import SIMILARITY_THRESHOLD
from common.errors import AmbiguousDuplicateError
from common.logger import get_logger
from extract.item_id import content_hash, normalize_content
from extract.models import RawAnnotationEntry

from .models import DeduplicationResult, Note

logger = get_logger(__name__)

ExactKey = tuple[str, int, str, str]
LocationKey = tuple[str, int, str]
ContentKey = tuple[str, str, str]


def jaccard_similarity(a: str, b: str) -> float:
    """Word-set overlap of two texts after normalization, in [0, 1].

    Example:
        >>> jaccard_similarity("Small habits compound", "small habits  compound")
        1.0
    """
    words_a = set(normalize_content(a).split())
    words_b = set(normalize_content(b).split())
    if not words_a and not words_b:
        return 1.0
    return len(words_a & words_b) / len(words_a | words_b)


@dataclass
class IndexedNote:
    """The parts of a note the index needs to compare against."""

    note_id: str
    book_key: str
    entry_type: str
    content_hash: str
    text: str
    location_start: int | None = None


class DeduplicationIndex:
    """Hash index over existing notes, keyed by book key."""

    def __init__(self):
        self.exact: dict[ExactKey, str] = {}
        self.by_location: dict[LocationKey, list[IndexedNote]] = defaultdict(list)
        self.by_content: dict[ContentKey, str] = {}
        self.unlocated: dict[tuple[str, str], list[IndexedNote]] = defaultdict(list)
        self._notes: dict[str, IndexedNote] = {}

    def __len__(self) -> int:
        return len(self._notes)

    def __contains__(self, note_id: str) -> bool:
        return note_id in self._notes

    @classmethod
    def build(
        cls, notes: Iterable[Note], book_keys_by_id: Mapping[str, str]
    ) -> "DeduplicationIndex":
        """Index persisted notes.

        Args:
            notes: Existing notes
            book_keys_by_id: Book id -> book key, to put notes in book-key space

        Returns:
            Populated index
        """
        index = cls()
        for note in notes:
            book_key = book_keys_by_id.get(note.book_id)
            if book_key is None:
                logger.warning(f"Note {note.id} references unknown book {note.book_id}")
                continue
            index.add(
                IndexedNote(
                    note_id=note.id,
                    book_key=book_key,
                    entry_type=note.entry_type,
                    content_hash=note.content_hash,
                    text=note.text,
                    location_start=note.location.start if note.location else None,
                )
            )
        logger.debug(f"Deduplication index built over {len(index)} note(s)")
        return index

    def add(self, item: IndexedNote) -> None:
        """Add a note, or re-key it if its id is already indexed."""
        if item.note_id in self._notes:
            self.remove(item.note_id)
        self._notes[item.note_id] = item

        if item.location_start is not None:
            self.exact[
                (item.book_key, item.location_start, item.entry_type, item.content_hash)
            ] = item.note_id
            self.by_location[(item.book_key, item.location_start, item.entry_type)].append(item)
        else:
            self.by_content[(item.book_key, item.entry_type, item.content_hash)] = item.note_id
            self.unlocated[(item.book_key, item.entry_type)].append(item)

    def remove(self, note_id: str) -> None:
        item = self._notes.pop(note_id, None)
        if item is None:
            return
        if item.location_start is not None:
            self.exact.pop(
                (item.book_key, item.location_start, item.entry_type, item.content_hash), None
            )
            bucket = self.by_location[(item.book_key, item.location_start, item.entry_type)]
            bucket[:] = [other for other in bucket if other.note_id != note_id]
        else:
            self.by_content.pop((item.book_key, item.entry_type, item.content_hash), None)
            bucket = self.unlocated[(item.book_key, item.entry_type)]
            bucket[:] = [other for other in bucket if other.note_id != note_id]


class DeduplicationEngine:
    """Classify entries one at a time against a ``DeduplicationIndex``.

    Example:
        >>> engine = DeduplicationEngine(DeduplicationIndex())
        >>> result = engine.classify(entry)
        >>> if result.decision == "unique":
        ...     engine.register(entry, "note:abc")
    """

    def __init__(
        self, index: DeduplicationIndex, similarity_threshold: float = SIMILARITY_THRESHOLD
    ):
        self.index = index
        self.similarity_threshold = similarity_threshold

    def classify(self, entry: RawAnnotationEntry) -> DeduplicationResult:
        """Decide whether an entry is a duplicate, an update, new, or ambiguous."""
        digest = content_hash(entry.content)
        book_key = entry.book_key

        if entry.location is None:
            return self._classify_unlocated(entry, book_key, digest)

        start = entry.location.start
        existing_id = self.index.exact.get((book_key, start, entry.entry_type, digest))
        if existing_id is not None:
            return DeduplicationResult(
                parse_index=entry.parse_index,
                decision="exact_match",
                existing_note_id=existing_id,
                similarity=1.0,
            )

        at_location = self.index.by_location.get((book_key, start, entry.entry_type))
        if not at_location:
            return DeduplicationResult(parse_index=entry.parse_index, decision="unique")

        if len(at_location) == 1:
            return DeduplicationResult(
                parse_index=entry.parse_index,
                decision="content_update",
                existing_note_id=at_location[0].note_id,
                similarity=jaccard_similarity(entry.content, at_location[0].text),
            )

        try:
            best, similarity = self._best_of(entry, at_location)
        except AmbiguousDuplicateError as e:
            logger.warning(f"[yellow]Manual review:[/yellow] {e}")
            return DeduplicationResult(
                parse_index=entry.parse_index,
                decision="manual_review",
                existing_note_id=at_location[0].note_id,
                similarity=jaccard_similarity(entry.content, at_location[0].text),
                conflict_reason=str(e),
            )
        return DeduplicationResult(
            parse_index=entry.parse_index,
            decision="content_update",
            existing_note_id=best.note_id,
            similarity=similarity,
        )

    def _classify_unlocated(
        self, entry: RawAnnotationEntry, book_key: str, digest: str
    ) -> DeduplicationResult:
        existing_id = self.index.by_content.get((book_key, entry.entry_type, digest))
        if existing_id is not None:
            return DeduplicationResult(
                parse_index=entry.parse_index,
                decision="exact_match",
                existing_note_id=existing_id,
                similarity=1.0,
            )

        best_id = None
        best_similarity = 0.0
        for other in self.index.unlocated.get((book_key, entry.entry_type), []):
            similarity = jaccard_similarity(entry.content, other.text)
            if similarity > best_similarity:
                best_id, best_similarity = other.note_id, similarity

        if best_id is not None and best_similarity >= self.similarity_threshold:
            reason = (
                f"Entry without location is {best_similarity:.0%} similar to note {best_id} "
                "but not identical"
            )
            logger.warning(f"[yellow]Manual review:[/yellow] {entry.title}: {reason}")
            return DeduplicationResult(
                parse_index=entry.parse_index,
                decision="manual_review",
                existing_note_id=best_id,
                similarity=best_similarity,
                conflict_reason=reason,
            )

        return DeduplicationResult(parse_index=entry.parse_index, decision="unique")

    def _best_of(
        self, entry: RawAnnotationEntry, candidates: list[IndexedNote]
    ) -> tuple[IndexedNote, float]:
        """Pick the single most similar note at a shared location.

        Raises:
            AmbiguousDuplicateError: If the two best candidates tie
        """
        scored = sorted(
            ((jaccard_similarity(entry.content, c.text), c) for c in candidates),
            key=lambda pair: pair[0],
            reverse=True,
        )
        (best_score, best), (runner_up_score, _) = scored[0], scored[1]
        if best_score == runner_up_score:
            raise AmbiguousDuplicateError(
                f"{entry.title}: {len(candidates)} notes at location {entry.location} "
                f"are equally similar ({best_score:.2f})"
            )
        return best, best_score

    def register(self, entry: RawAnnotationEntry, note_id: str) -> None:
        """Record that ``entry`` is now stored as ``note_id``.

        Used for both new notes and content updates (the note is re-keyed
        under its new hash).
        """
        self.index.add(
            IndexedNote(
                note_id=note_id,
                book_key=entry.book_key,
                entry_type=entry.entry_type,
                content_hash=content_hash(entry.content),
                text=entry.content,
                location_start=entry.location.start if entry.location else None,
            )
        )
