"""Abstract base class for metadata providers."""

from abc import ABC, abstractmethod

from common.errors import ProviderError
from common.logger import get_logger

from ..models import BookCandidate, ProviderResult

logger = get_logger(__name__)


class MetadataProvider(ABC):
    """Base class for all external book metadata providers.

    Implementations only have to write ``_search``, which may raise
    ``ProviderError`` subclasses. ``search`` turns every failure into an
    unavailable ``ProviderResult`` so canonicalization never has to handle
    provider exceptions.
    """

    #: Provider name recorded on audits and candidates
    name: str = "none"

    @abstractmethod
    def _search(self, title: str, author: str | None) -> list[BookCandidate]:
        """Query the provider.

        Args:
            title: Book title
            author: Author name, if known

        Returns:
            Candidates in the provider's relevance order (possibly empty)

        Raises:
            ProviderUnavailableError: If the provider cannot be reached
            ProviderTimeoutError: If the request timed out
            RateLimitError: If the provider rejected the request for rate
        """
        pass

    def search(self, title: str, author: str | None = None) -> ProviderResult:
        """Search for candidates. Never raises.

        Example:
            >>> result = provider.search("Atomic Habits", "James Clear")
            >>> if not result.available:
            ...     print(result.error)
        """
        try:
            candidates = self._search(title, author)
        except ProviderError as e:
            logger.warning(f"[yellow]{self.name}[/yellow] unavailable for '{title}': {e}")
            return ProviderResult(candidates=[], available=False, error=str(e))
        except Exception as e:
            logger.exception(f"Unexpected error from {self.name} for '{title}'")
            return ProviderResult(candidates=[], available=False, error=f"{type(e).__name__}: {e}")
        return ProviderResult(candidates=candidates, available=True)

    def close(self) -> None:
        """Release any resources held by the provider."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
