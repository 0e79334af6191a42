"""Tests for metadata normalization and content hashing."""

from datetime import datetime

import pytest

from extract.item_id import content_hash, new_id, normalize_content
from extract.models import Location, make_book_key
from extract.normalize import parse_location, parse_page, parse_timestamp

NOW = datetime(2025, 6, 1, 12, 0)


class TestParseTimestamp:
    """Tests for parse_timestamp()."""

    @pytest.mark.parametrize(
        "text",
        [
            "Monday, January 1, 2024 10:00:00 AM",
            "Monday, January 1, 2024 at 10:00:00 AM",
            "January 1, 2024 10:00:00 AM",
            "2024-01-01 10:00:00",
            "2024-01-01T10:00:00",
        ],
    )
    def test_known_formats(self, text):
        assert parse_timestamp(text) == (datetime(2024, 1, 1, 10, 0), None)

    def test_locale_variant_parsed_by_fallback(self):
        timestamp, warning = parse_timestamp("15 December 2024 15:45")
        assert timestamp == datetime(2024, 12, 15, 15, 45)
        assert warning is None

    def test_missing_date_uses_now(self):
        timestamp, warning = parse_timestamp(None, now=NOW)
        assert timestamp == NOW
        assert "Missing date" in warning

    def test_garbage_uses_now(self):
        timestamp, warning = parse_timestamp("not a date", now=NOW)
        assert timestamp == NOW
        assert "Could not parse date 'not a date'" in warning


class TestParseLocation:
    """Tests for parse_location()."""

    def test_single_location(self):
        assert parse_location("514") == (Location(514), None)

    def test_range(self):
        assert parse_location("512-514") == (Location(512, 514), None)

    def test_abbreviated_range_is_expanded(self):
        assert parse_location("1420-35") == (Location(1420, 1435), None)

    def test_absent(self):
        assert parse_location(None) == (None, None)
        assert parse_location("  ") == (None, None)

    def test_unparseable(self):
        location, warning = parse_location("abc")
        assert location is None
        assert "Could not parse location 'abc'" in warning

    def test_inverted_range_keeps_start(self):
        location, warning = parse_location("520-510")
        assert location == Location(520)
        assert "Inverted" in warning


def test_location_str():
    assert str(Location(512, 514)) == "512-514"
    assert str(Location(514)) == "514"
    assert Location(514).end_or_start == 514


@pytest.mark.parametrize("text, expected", [("34", 34), ("12a", 12), ("xii", None), (None, None)])
def test_parse_page(text, expected):
    assert parse_page(text) == expected


class TestContentHash:
    """Tests for content hashing."""

    def test_case_and_whitespace_are_ignored(self):
        assert content_hash("Small  habits\ncompound.") == content_hash("small habits compound.")

    def test_different_text_differs(self):
        assert content_hash("Small habits compound.") != content_hash("Big habits compound.")

    def test_format(self):
        digest = content_hash("anything")
        assert digest.startswith("sha256:")
        assert len(digest) == len("sha256:") + 64

    def test_normalize_content(self):
        assert normalize_content("  Small  habits\ncompound. ") == "small habits compound."


def test_new_id_has_prefix_and_is_unique():
    first, second = new_id("note"), new_id("note")
    assert first.startswith("note:")
    assert first != second


def test_make_book_key():
    assert make_book_key(" Atomic Habits ", "James Clear") == "Atomic Habits|James Clear"
    assert make_book_key("Notes", None) == "Notes|"
