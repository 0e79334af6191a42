"""Provider that never finds anything."""

from ..models import BookCandidate
from .base import MetadataProvider


class NullProvider(MetadataProvider):
    """Always available, always empty. Every book resolves provisionally."""

    name = "none"

    def _search(self, title: str, author: str | None) -> list[BookCandidate]:
        return []
