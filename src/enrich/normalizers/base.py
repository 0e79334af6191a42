"""Abstract base class for provider response normalizers."""

from abc import ABC, abstractmethod
from typing import Any

from ..models import BookCandidate


class Normalizer(ABC):
    """Base class for API response normalizers.

    Normalizers convert one item of an external API response into a
    ``BookCandidate``. Each provider has its own normalizer to handle its
    specific response structure.
    """

    #: Provider name stamped on every candidate
    source: str = ""

    @abstractmethod
    def normalize(self, api_response: dict[str, Any]) -> BookCandidate | None:
        """Convert one API result to a candidate.

        Args:
            api_response: One raw result (a Google volume, an Open Library doc)

        Returns:
            BookCandidate, or None if the result lacks an identifier
        """
        pass

    def _safe_get(self, data: dict[str, Any], *keys: str, default: Any = None) -> Any:
        """Safely navigate nested dictionary keys.

        Example:
            >>> self._safe_get({'a': {'b': {'c': 1}}}, 'a', 'b', 'c')
            1
            >>> self._safe_get({'a': {}}, 'a', 'b', 'c', default='missing')
            'missing'
        """
        current = data
        for key in keys:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default
        return current

    def _authors(self, value: Any) -> tuple[str, ...]:
        if not isinstance(value, list):
            return ()
        return tuple(str(name).strip() for name in value if name and str(name).strip())
