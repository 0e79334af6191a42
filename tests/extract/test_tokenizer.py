"""Tests for tokenizing clippings exports."""

from datetime import datetime

import pytest
from support import ATOMIC_HABITS_EXPORT, HIGHLIGHT_BLOCK, SEPARATOR, block

from common.errors import ErrorBudgetExceededError, MalformedEntryError
from extract.models import Location
from extract.tokenizer import (
    parse_block,
    sanitize_text,
    serialize_entries,
    serialize_entry,
    split_blocks,
    tokenize,
    validate_export,
)

ADDED = "Added on Monday, January 1, 2024 10:00:00 AM"
PARTIAL_METADATA = f"- Your Highlight at page 5 location 77 | {ADDED}"
BAD_DATE_METADATA = "- Your Highlight on location 150 | Added on not a date"
NOW = datetime(2025, 6, 1, 12, 0)


class TestTokenize:
    """Tests for tokenize()."""

    def test_highlight_and_note(self):
        result = tokenize(ATOMIC_HABITS_EXPORT, file_name="My Clippings.txt")

        assert result.blocks_found == 2
        assert result.errors == []
        assert result.file_name == "My Clippings.txt"
        assert [e.entry_type for e in result.entries] == ["highlight", "note"]

        highlight, note = result.entries
        assert highlight.title == "Atomic Habits"
        assert highlight.author == "James Clear"
        assert highlight.page == 34
        assert highlight.location == Location(512, 514)
        assert highlight.timestamp == datetime(2024, 1, 1, 10, 0)
        assert highlight.content == "Small habits compound."
        assert note.location == Location(514)
        assert note.page is None
        assert note.content == "This is the key idea."

    def test_entries_keep_file_order(self):
        result = tokenize(ATOMIC_HABITS_EXPORT)
        assert [e.parse_index for e in result.entries] == [0, 1]
        assert [e.temp_id for e in result.entries] == ["entry-0", "entry-1"]

    def test_book_key_groups_by_title_and_author(self):
        result = tokenize(ATOMIC_HABITS_EXPORT)
        assert {e.book_key for e in result.entries} == {"Atomic Habits|James Clear"}

    def test_bookmark_without_body(self):
        text = block("Dune (Frank Herbert)", f"- Your Bookmark on page 10 | location 150 | {ADDED}")
        result = tokenize(text)

        assert result.errors == []
        assert result.entries[0].entry_type == "bookmark"
        assert result.entries[0].content == ""
        assert result.count("bookmark") == 1

    def test_empty_highlight_is_malformed(self):
        text = block("Dune (Frank Herbert)", f"- Your Highlight on location 150 | {ADDED}")
        result = tokenize(text)

        assert result.entries == []
        assert result.entries_failed == 1
        assert "empty highlight body" in result.errors[0]

    def test_malformed_blocks_are_counted(self):
        text = ATOMIC_HABITS_EXPORT + "Only a title line\n" + SEPARATOR
        result = tokenize(text)

        assert result.blocks_found == 3
        assert len(result.entries) == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Block 2:")
        assert len(result.entries) + len(result.errors) == result.blocks_found

    def test_error_budget_exceeded(self):
        bad = "Only a title line\n" + SEPARATOR
        with pytest.raises(ErrorBudgetExceededError) as exc_info:
            tokenize(bad * 3, max_errors=1)

        assert exc_info.value.max_errors == 1
        assert len(exc_info.value.errors) == 2

    def test_error_budget_not_exceeded_at_limit(self):
        bad = "Only a title line\n" + SEPARATOR
        result = tokenize(bad * 2, max_errors=2)
        assert result.entries_failed == 2

    def test_unparseable_date_falls_back_to_now(self):
        text = block("Dune (Frank Herbert)", BAD_DATE_METADATA, "Fear")
        result = tokenize(text, now=NOW)

        assert result.entries[0].timestamp == NOW
        assert len(result.warnings) == 1
        assert "not a date" in result.warnings[0]

    def test_windows_line_endings_and_bom(self):
        text = "\ufeff" + ATOMIC_HABITS_EXPORT.replace("\n", "\r\n")
        result = tokenize(text)

        assert len(result.entries) == 2
        assert result.entries[0].title == "Atomic Habits"

    def test_byte_order_mark_before_every_title(self):
        text = "\ufeff" + HIGHLIGHT_BLOCK + SEPARATOR + "\ufeff" + HIGHLIGHT_BLOCK + SEPARATOR
        result = tokenize(text)

        assert [e.book_key for e in result.entries] == ["Atomic Habits|James Clear"] * 2
        assert [e.title for e in result.entries] == ["Atomic Habits"] * 2

    def test_empty_text(self):
        result = tokenize("")
        assert result.blocks_found == 0
        assert result.entries == []


class TestLooseParsing:
    """Tests for the fallback patterns and strict mode."""

    def test_title_without_author(self):
        text = block("Untitled Notes", f"- Your Highlight on location 10 | {ADDED}", "Text")
        entry = tokenize(text).entries[0]

        assert entry.title == "Untitled Notes"
        assert entry.author is None
        assert entry.book_key == "Untitled Notes|"

    def test_title_without_author_rejected_in_strict_mode(self):
        text = block("Untitled Notes", f"- Your Highlight on location 10 | {ADDED}", "Text")
        result = tokenize(text, strict=True)

        assert result.entries == []
        assert "cannot parse title line" in result.errors[0]

    def test_book_title_prefix_is_stripped(self):
        text = block(
            "Book Title: Dune (Frank Herbert)", f"- Your Note on location 5 | {ADDED}", "Hm"
        )
        entry = tokenize(text).entries[0]
        assert entry.title == "Dune"

    def test_partial_metadata_recovered_with_warning(self):
        text = block("Dune (Frank Herbert)", PARTIAL_METADATA, "Fear")
        result = tokenize(text)

        entry = result.entries[0]
        assert entry.page == 5
        assert entry.location == Location(77)
        assert entry.timestamp == datetime(2024, 1, 1, 10, 0)
        assert any("Recovered partial metadata" in w for w in result.warnings)

    def test_partial_metadata_rejected_in_strict_mode(self):
        text = block("Dune (Frank Herbert)", PARTIAL_METADATA, "Fear")
        result = tokenize(text, strict=True)
        assert result.entries_failed == 1


def test_parse_block_requires_two_lines():
    with pytest.raises(MalformedEntryError, match="insufficient lines"):
        parse_block("Just a title", 4)


def test_sanitize_text_normalizes_line_endings():
    assert sanitize_text("\ufeffa\r\nb\rc") == "a\nb\nc"


def test_sanitize_text_drops_byte_order_marks_inside_the_text():
    assert sanitize_text("a\n\ufeffb") == "a\nb"


def test_split_blocks_drops_empty_blocks():
    blocks = split_blocks(ATOMIC_HABITS_EXPORT + "\n\n" + SEPARATOR)
    assert len(blocks) == 2


def test_serialize_entry_matches_kindle_format():
    entry = tokenize(HIGHLIGHT_BLOCK + SEPARATOR).entries[0]
    assert serialize_entry(entry) == HIGHLIGHT_BLOCK.rstrip("\n")


def test_serialized_export_tokenizes_to_same_entries():
    entries = tokenize(ATOMIC_HABITS_EXPORT).entries
    reparsed = tokenize(serialize_entries(entries)).entries

    assert [(e.entry_type, e.location, e.content) for e in reparsed] == [
        (e.entry_type, e.location, e.content) for e in entries
    ]


class TestValidateExport:
    """Tests for validate_export()."""

    def test_valid_export(self):
        validation = validate_export(ATOMIC_HABITS_EXPORT)
        assert validation.is_valid
        assert validation.errors == []
        assert validation.estimated_entries == 2

    def test_empty_export(self):
        validation = validate_export("   ")
        assert not validation.is_valid
        assert validation.errors == ["File content is empty"]

    def test_unrelated_text(self):
        validation = validate_export("hello world\nnothing to see")
        assert not validation.is_valid

    def test_missing_separators_warns(self):
        validation = validate_export(HIGHLIGHT_BLOCK)
        assert validation.is_valid
        assert any("separators" in w for w in validation.warnings)
