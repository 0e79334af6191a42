"""Google Books API client."""

import requests

from common.env import env
from common.errors import ProviderTimeoutError, ProviderUnavailableError, RateLimitError
from common.logger import get_logger

from ..models import BookCandidate
from ..normalizers.google_books_normalizer import GoogleBooksNormalizer
from .base import MetadataProvider
from .rate_limiter import RateLimiter

logger = get_logger(__name__)


class GoogleBooksClient(MetadataProvider):
    """Search the Google Books volumes endpoint.

    An API key is optional; anonymous requests work at a lower quota.

    API Documentation: https://developers.google.com/books/docs/v1/using
    """

    name = "google-books"

    VOLUMES_URL = "https://www.googleapis.com/books/v1/volumes"
    MAX_RESULTS = 5
    FIELDS = "items(id,volumeInfo(title,authors,imageLinks,industryIdentifiers))"

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float | None = None,
        requests_per_minute: int | None = None,
        session: requests.Session | None = None,
    ):
        """Initialize Google Books client.

        Args:
            api_key: Google API key (default: GOOGLE_BOOKS_API_KEY)
            timeout: Per-request timeout in seconds (default: PROVIDER_TIMEOUT_SECONDS)
            requests_per_minute: Rate limit (default: PROVIDER_REQUESTS_PER_MINUTE)
            session: HTTP session to use, mostly for tests
        """
        self.api_key = api_key if api_key is not None else env.google_books_api_key()
        self.timeout = timeout if timeout is not None else env.provider_timeout_seconds()
        self.rate_limiter = RateLimiter(
            requests_per_period=requests_per_minute or env.provider_requests_per_minute(),
            period_seconds=60,
        )
        self.session = session or requests.Session()
        self.normalizer = GoogleBooksNormalizer()

    def build_query(self, title: str, author: str | None) -> str:
        """Build the ``q`` parameter.

        Example:
            >>> client.build_query("Atomic Habits", "James Clear")
            'intitle:Atomic Habits inauthor:James Clear'
        """
        query = f"intitle:{title}"
        if author:
            query += f" inauthor:{author}"
        return query

    def _search(self, title: str, author: str | None) -> list[BookCandidate]:
        self.rate_limiter.wait_if_needed()

        params = {
            "q": self.build_query(title, author),
            "maxResults": self.MAX_RESULTS,
            "fields": self.FIELDS,
        }
        if self.api_key:
            params["key"] = self.api_key

        logger.debug(f"Searching Google Books for '{title}' by {author or 'unknown author'}")
        try:
            response = self.session.get(self.VOLUMES_URL, params=params, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise ProviderTimeoutError(f"Google Books timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise ProviderUnavailableError(f"Google Books request failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitError("Google Books rate limit exceeded")
        if not response.ok:
            raise ProviderUnavailableError(f"HTTP {response.status_code}: {response.reason}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderUnavailableError("Google Books returned invalid JSON") from e

        candidates = []
        for item in data.get("items") or []:
            candidate = self.normalizer.normalize(item)
            if candidate is not None:
                candidates.append(candidate)

        logger.debug(f"Google Books returned {len(candidates)} candidate(s) for '{title}'")
        return candidates

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()
