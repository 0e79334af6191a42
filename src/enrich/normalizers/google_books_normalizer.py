"""Google Books volume normalizer."""

from typing import Any

from ..models import BookCandidate
from .base import Normalizer


class GoogleBooksNormalizer(Normalizer):
    """Normalize one Google Books volume into a ``BookCandidate``."""

    source = "google-books"

    def normalize(self, api_response: dict[str, Any]) -> BookCandidate | None:
        volume_id = api_response.get("id")
        if not volume_id:
            return None

        info = api_response.get("volumeInfo") or {}
        return BookCandidate(
            candidate_id=volume_id,
            title=info.get("title") or "Unknown",
            authors=self._authors(info.get("authors")),
            isbn_13=self._extract_isbn_13(info),
            cover_url=self._extract_cover_url(info),
            source=self.source,
        )

    def _extract_isbn_13(self, info: dict[str, Any]) -> str | None:
        for identifier in info.get("industryIdentifiers") or []:
            if identifier.get("type") == "ISBN_13" and identifier.get("identifier"):
                return identifier["identifier"]
        return None

    def _extract_cover_url(self, info: dict[str, Any]) -> str | None:
        """Thumbnail URL, forced to https."""
        thumbnail = self._safe_get(info, "imageLinks", "thumbnail")
        if not thumbnail:
            return None
        return thumbnail.replace("http:", "https:", 1)
