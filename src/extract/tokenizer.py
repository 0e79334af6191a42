"""
Tokenize Kindle "My Clippings.txt" exports into annotation entries.

An export is a sequence of blocks separated by a ``==========`` line:

    Atomic Habits (James Clear)
    - Your Highlight on page 34 | location 512-514 | Added on Monday, January 1, 2024 10:00:00 AM

    Small habits compound.
    ==========

Tokenizing is a left fold over the blocks. Each step receives the state
produced by the previous one and returns a new state, so nothing is shared
between calls and any block can be tokenized in isolation.
"""

import re
from dataclasses import dataclass, replace
from datetime import datetime

from common.constants import ENTRY_SEPARATOR
from common.errors import ErrorBudgetExceededError, MalformedEntryError
from common.logger import get_logger

from .models import Location, RawAnnotationEntry, TokenizeResult
from .normalize import parse_location, parse_page, parse_timestamp

logger = get_logger(__name__)

TITLE_PATTERN = re.compile(r"^(.+?)\s*\(([^)]+)\)\s*$")
LOOSE_TITLE_PATTERN = re.compile(r"^([^(]+?)(?:\s*\(([^)]*)\)?)?\s*$")
TITLE_PREFIX_PATTERN = re.compile(r"^Book Title:\s*", re.IGNORECASE)

METADATA_PATTERN = re.compile(
    r"^-\s*Your\s+(Highlight|Note|Bookmark)\s+"
    r"(?:(?:on|at)\s+)?"
    r"(?:page\s+(\S+?)\s*\|\s*)?"
    r"(?:(?:at\s+)?location\s+(\S+?)\s*\|\s*)?"
    r"Added\s+on\s+(.+)$",
    re.IGNORECASE,
)
LOOSE_METADATA_PATTERN = re.compile(r"^-.*?\b(Highlight|Note|Bookmark)\b(.*)$", re.IGNORECASE)
LOOSE_PAGE_PATTERN = re.compile(r"page\s+(\S+?)(?:\s|\||$)", re.IGNORECASE)
LOOSE_LOCATION_PATTERN = re.compile(r"location\s+([\d-]+)", re.IGNORECASE)
LOOSE_DATE_PATTERN = re.compile(r"Added\s+on\s+(.+)$", re.IGNORECASE)


@dataclass(frozen=True)
class TokenizerOptions:
    """Knobs for a single tokenize run."""

    max_errors: int = 10
    strict: bool = False
    now: datetime | None = None


@dataclass(frozen=True)
class TokenizerState:
    """Accumulator threaded through the fold."""

    entries: tuple[RawAnnotationEntry, ...] = ()
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True)
class _Metadata:
    entry_type: str
    page: int | None
    location: Location | None
    timestamp: datetime
    warnings: tuple[str, ...]


def sanitize_text(text: str) -> str:
    """Normalize line endings and drop byte-order marks.

    Kindle writes a byte-order mark at the start of every title line, not
    just at the start of the file.
    """
    return text.replace("\ufeff", "").replace("\r\n", "\n").replace("\r", "\n")


def split_blocks(text: str) -> list[str]:
    """Split an export into non-empty blocks on the separator line."""
    blocks = []
    for raw_block in sanitize_text(text).split(ENTRY_SEPARATOR):
        block = raw_block.strip()
        if block:
            blocks.append(block)
    return blocks


def tokenize(
    text: str,
    file_name: str | None = None,
    max_errors: int = 10,
    strict: bool = False,
    now: datetime | None = None,
) -> TokenizeResult:
    """Tokenize an export into RawAnnotationEntry objects.

    Args:
        text: Full export text
        file_name: Source file name, for log messages and the result
        max_errors: Number of malformed blocks tolerated before giving up
        strict: Disable the loose fallback patterns
        now: Processing time used when a date cannot be parsed

    Returns:
        TokenizeResult with entries in file order. ``len(entries) +
        len(errors)`` always equals ``blocks_found``.

    Raises:
        ErrorBudgetExceededError: If more than ``max_errors`` blocks are malformed
    """
    options = TokenizerOptions(max_errors=max_errors, strict=strict, now=now or datetime.now())
    blocks = split_blocks(text)

    state = TokenizerState()
    for index, block in enumerate(blocks):
        state = _fold_block(state, block, index, options)
        if len(state.errors) > options.max_errors:
            raise ErrorBudgetExceededError(list(state.errors), options.max_errors)

    source = file_name or "<text>"
    logger.debug(
        f"Tokenized {source}: {len(state.entries)} entries, "
        f"{len(state.errors)} malformed of {len(blocks)} blocks"
    )

    return TokenizeResult(
        entries=list(state.entries),
        blocks_found=len(blocks),
        errors=list(state.errors),
        warnings=list(state.warnings),
        file_name=file_name,
    )


def _fold_block(
    state: TokenizerState, block: str, index: int, options: TokenizerOptions
) -> TokenizerState:
    """Tokenize one block and fold the outcome into the state."""
    try:
        entry, warnings = parse_block(block, index, options)
    except MalformedEntryError as e:
        logger.warning(f"Skipping malformed entry: {e}")
        return replace(state, errors=state.errors + (str(e),))

    for message in warnings:
        logger.warning(f"Block {index}: {message}")

    return replace(
        state,
        entries=state.entries + (entry,),
        warnings=state.warnings + tuple(f"Block {index}: {w}" for w in warnings),
    )


def parse_block(
    block: str, index: int, options: TokenizerOptions | None = None
) -> tuple[RawAnnotationEntry, list[str]]:
    """Parse a single block into an entry plus warnings.

    Raises:
        MalformedEntryError: If the block lacks a usable title or metadata line
    """
    options = options or TokenizerOptions()
    lines = [line.strip() for line in block.split("\n")]
    while lines and not lines[0]:
        lines.pop(0)

    if len(lines) < 2:
        raise MalformedEntryError("insufficient lines", block_index=index)

    title, author = _parse_title_line(lines[0], options.strict, index)
    metadata = _parse_metadata_line(lines[1], options, index)
    content = "\n".join(lines[2:]).strip()

    if not content and metadata.entry_type != "bookmark":
        raise MalformedEntryError(f"empty {metadata.entry_type} body", block_index=index)

    entry = RawAnnotationEntry(
        title=title,
        author=author,
        entry_type=metadata.entry_type,  # type: ignore[arg-type]
        content=content,
        timestamp=metadata.timestamp,
        parse_index=index,
        location=metadata.location,
        page=metadata.page,
    )
    return entry, list(metadata.warnings)


def _parse_title_line(line: str, strict: bool, index: int) -> tuple[str, str | None]:
    line = TITLE_PREFIX_PATTERN.sub("", line).strip()

    match = TITLE_PATTERN.match(line)
    if match:
        return match.group(1).strip(), match.group(2).strip()

    if not strict:
        loose = LOOSE_TITLE_PATTERN.match(line)
        if loose and loose.group(1).strip():
            author = (loose.group(2) or "").strip() or None
            return loose.group(1).strip(), author

    raise MalformedEntryError(f"cannot parse title line '{line}'", block_index=index)


def _parse_metadata_line(line: str, options: TokenizerOptions, index: int) -> _Metadata:
    match = METADATA_PATTERN.match(line)
    if match:
        entry_type, page_text, location_text, date_text = match.groups()
        warnings: list[str] = []
    elif not options.strict and (loose := LOOSE_METADATA_PATTERN.match(line)):
        entry_type, rest = loose.groups()
        page_match = LOOSE_PAGE_PATTERN.search(rest)
        location_match = LOOSE_LOCATION_PATTERN.search(rest)
        date_match = LOOSE_DATE_PATTERN.search(rest)
        page_text = page_match.group(1) if page_match else None
        location_text = location_match.group(1) if location_match else None
        date_text = date_match.group(1) if date_match else None
        warnings = [f"Recovered partial metadata from '{line}'"]
    else:
        raise MalformedEntryError(f"cannot parse metadata line '{line}'", block_index=index)

    location, location_warning = parse_location(location_text)
    if location_warning:
        warnings.append(location_warning)

    timestamp, date_warning = parse_timestamp(date_text, now=options.now)
    if date_warning:
        warnings.append(date_warning)

    return _Metadata(
        entry_type=entry_type.lower(),
        page=parse_page(page_text),
        location=location,
        timestamp=timestamp,
        warnings=tuple(warnings),
    )


def format_timestamp(timestamp: datetime) -> str:
    """Render a timestamp the way Kindle writes it.

    Example:
        >>> format_timestamp(datetime(2024, 1, 1, 10, 0))
        'Monday, January 1, 2024 10:00:00 AM'
    """
    hour = timestamp.hour % 12 or 12
    return (
        f"{timestamp:%A}, {timestamp:%B} {timestamp.day}, {timestamp.year} "
        f"{hour}:{timestamp:%M}:{timestamp:%S} {'AM' if timestamp.hour < 12 else 'PM'}"
    )


def serialize_entry(entry: RawAnnotationEntry) -> str:
    """Render an entry back into a clippings block (without separator)."""
    title_line = f"{entry.title} ({entry.author})" if entry.author else entry.title

    parts = [f"- Your {entry.entry_type.capitalize()}"]
    position = []
    if entry.page is not None:
        position.append(f"on page {entry.page}")
    if entry.location is not None:
        position.append(f"location {entry.location}" if position else f"on location {entry.location}")
    if position:
        parts.append(" | ".join(position) + " |")
    parts.append(f"Added on {format_timestamp(entry.timestamp)}")

    return "\n".join([title_line, " ".join(parts), "", entry.content])


def serialize_entries(entries: list[RawAnnotationEntry]) -> str:
    """Render entries as a complete export."""
    return "".join(f"{serialize_entry(entry)}\n{ENTRY_SEPARATOR}\n" for entry in entries)


@dataclass
class ExportValidation:
    """Quick pre-flight check of an export, without tokenizing it."""

    is_valid: bool
    errors: list[str]
    warnings: list[str]
    estimated_entries: int


def validate_export(text: str) -> ExportValidation:
    """Check that text looks like a clippings export.

    Example:
        >>> validate_export("").is_valid
        False
    """
    errors: list[str] = []
    warnings: list[str] = []

    if not text or not text.strip():
        return ExportValidation(False, ["File content is empty"], warnings, 0)

    has_titles = re.search(r"^.+\s*\(.+\)\s*$", text, re.MULTILINE) is not None
    has_metadata = (
        re.search(r"^-\s*Your\s+(Highlight|Note|Bookmark)", text, re.MULTILINE | re.IGNORECASE)
        is not None
    )

    if not has_titles and not has_metadata:
        errors.append("File does not look like a Kindle export (no titles or metadata lines)")
    elif not has_metadata:
        warnings.append("No highlight, note or bookmark metadata lines found")

    if ENTRY_SEPARATOR not in text:
        warnings.append(f"File has no '{ENTRY_SEPARATOR}' separators, parsing may be unreliable")

    estimated = max(text.count(ENTRY_SEPARATOR), 1)
    return ExportValidation(not errors, errors, warnings, estimated)
