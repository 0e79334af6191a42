"""Open Library API client for canonical book candidates."""

import requests

from common.env import env
from common.errors import ProviderTimeoutError, ProviderUnavailableError, RateLimitError
from common.logger import get_logger

from ..models import BookCandidate
from ..normalizers.openlibrary_normalizer import OpenLibraryNormalizer
from .base import MetadataProvider
from .rate_limiter import RateLimiter

logger = get_logger(__name__)


class OpenLibraryClient(MetadataProvider):
    """Client for the Open Library search API.

    Rate limit: Conservative 60 requests per minute (unofficial limit).

    API Documentation: https://openlibrary.org/dev/docs/api/search
    """

    name = "openlibrary"

    BASE_URL = "https://openlibrary.org"
    SEARCH_URL = f"{BASE_URL}/search.json"
    FIELDS = "key,title,author_name,isbn,cover_i"

    def __init__(
        self,
        timeout: float | None = None,
        requests_per_minute: int | None = None,
        session: requests.Session | None = None,
    ):
        """Initialize Open Library client.

        Args:
            timeout: Per-request timeout in seconds (default: PROVIDER_TIMEOUT_SECONDS)
            requests_per_minute: Rate limit (default: PROVIDER_REQUESTS_PER_MINUTE)
            session: HTTP session to use, mostly for tests
        """
        self.timeout = timeout if timeout is not None else env.provider_timeout_seconds()
        self.rate_limiter = RateLimiter(
            requests_per_period=requests_per_minute or env.provider_requests_per_minute(),
            period_seconds=60,
        )
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "kindle-notes/1.0"})
        self.normalizer = OpenLibraryNormalizer()

    def _search(self, title: str, author: str | None) -> list[BookCandidate]:
        # Try multiple title variations to handle subtitles
        title_variations = self._generate_title_variations(title)

        for i, title_variant in enumerate(title_variations):
            candidates = self._search_title(title_variant, author)
            if candidates:
                if i > 0:
                    logger.debug(
                        f"Found match using title variation '{title_variant}' "
                        f"(original: '{title}')"
                    )
                return candidates

        logger.debug(
            f"No results found for '{title}' by {author} (tried {len(title_variations)} variations)"
        )
        return []

    def _generate_title_variations(self, title: str) -> list[str]:
        """Generate title variations to try for better matching.

        Example:
            >>> client._generate_title_variations("Money: A Suicide Note")
            ['Money: A Suicide Note', 'Money']
        """
        variations = [title]

        # Retry without a subtitle
        for separator in [":", "—", " - "]:
            if separator in title:
                main_title = title.split(separator)[0].strip()
                if main_title and main_title not in variations:
                    variations.append(main_title)

        return variations

    def _search_title(self, title: str, author: str | None) -> list[BookCandidate]:
        self.rate_limiter.wait_if_needed()

        params = {"title": title, "limit": 5, "fields": self.FIELDS}
        if author:
            params["author"] = author

        logger.debug(f"Searching Open Library for '{title}' by {author}")
        try:
            response = self.session.get(self.SEARCH_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.Timeout as e:
            raise ProviderTimeoutError(f"Open Library API timeout for '{title}'") from e
        except requests.exceptions.RequestException as e:
            if e.response is not None and e.response.status_code == 429:
                raise RateLimitError("Open Library rate limit exceeded") from e
            raise ProviderUnavailableError(f"Open Library API error: {e}") from e
        except ValueError as e:
            raise ProviderUnavailableError("Open Library returned invalid JSON") from e

        candidates = []
        for doc in data.get("docs", []):
            candidate = self.normalizer.normalize(doc)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()
