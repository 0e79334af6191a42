"""Open Library search result normalizer."""

from typing import Any

from ..models import BookCandidate
from .base import Normalizer


class OpenLibraryNormalizer(Normalizer):
    """Normalize one Open Library search doc into a ``BookCandidate``.

    Search docs carry the work key ('/works/OL45804W'), the title, a list of
    author names, every known ISBN of every edition and a cover id.
    """

    source = "openlibrary"

    def normalize(self, api_response: dict[str, Any]) -> BookCandidate | None:
        work_id = self._extract_openlibrary_id(api_response)
        if not work_id:
            return None

        return BookCandidate(
            candidate_id=work_id,
            title=api_response.get("title") or "Unknown",
            authors=self._authors(api_response.get("author_name")),
            isbn_13=self._extract_isbn_13(api_response),
            cover_url=self._extract_cover_url(api_response),
            source=self.source,
        )

    def _extract_openlibrary_id(self, data: dict[str, Any]) -> str | None:
        """Extract work ID from a key like '/works/OL45804W'."""
        key = data.get("key")
        if not key:
            return None
        return key.rstrip("/").split("/")[-1]

    def _extract_isbn_13(self, data: dict[str, Any]) -> str | None:
        for isbn in data.get("isbn") or []:
            if len(isbn) == 13:
                return isbn
        return None

    def _extract_cover_url(self, data: dict[str, Any]) -> str | None:
        cover_id = data.get("cover_i")
        if cover_id:
            return f"https://covers.openlibrary.org/b/id/{cover_id}-L.jpg"
        return None
