"""Tests for metadata provider clients, normalizers and rate limiting."""

from unittest.mock import Mock

import pytest
import requests
from support import StubProvider

from common.errors import ProviderTimeoutError
from enrich.clients.factory import create_provider
from enrich.clients.google_books import GoogleBooksClient
from enrich.clients.null_provider import NullProvider
from enrich.clients.openlibrary import OpenLibraryClient
from enrich.clients.rate_limiter import RateLimiter
from enrich.normalizers.google_books_normalizer import GoogleBooksNormalizer
from enrich.normalizers.openlibrary_normalizer import OpenLibraryNormalizer

GOOGLE_VOLUME = {
    "id": "lFhbDwAAQBAJ",
    "volumeInfo": {
        "title": "Atomic Habits",
        "authors": ["James Clear"],
        "industryIdentifiers": [
            {"type": "ISBN_10", "identifier": "0735211299"},
            {"type": "ISBN_13", "identifier": "9780735211292"},
        ],
        "imageLinks": {"thumbnail": "http://books.google.com/content?id=lFhbDwAAQBAJ"},
    },
}

OPENLIBRARY_DOC = {
    "key": "/works/OL17930368W",
    "title": "Atomic Habits",
    "author_name": ["James Clear"],
    "isbn": ["0735211299", "9780735211292"],
    "cover_i": 8950543,
}


def make_response(status_code=200, payload=None, reason="OK"):
    response = Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = reason
    response.json.return_value = payload if payload is not None else {}
    return response


class FakeClock:
    """Manual clock whose sleep advances time."""

    def __init__(self):
        self.now = 0.0
        self.slept = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.slept.append(seconds)
        self.now += seconds


class TestRateLimiter:
    """Tests for the sliding-window rate limiter."""

    def test_requests_under_limit_do_not_wait(self):
        clock = FakeClock()
        limiter = RateLimiter(2, 10, clock=clock, sleep=clock.sleep)

        assert limiter.wait_if_needed() == 0
        clock.now = 1
        assert limiter.wait_if_needed() == 0
        assert clock.slept == []

    def test_waits_until_oldest_request_leaves_window(self):
        clock = FakeClock()
        limiter = RateLimiter(2, 10, clock=clock, sleep=clock.sleep)
        limiter.wait_if_needed()
        clock.now = 1
        limiter.wait_if_needed()
        clock.now = 2

        assert limiter.delay() == 8
        assert limiter.wait_if_needed() == 8
        assert clock.now == 10
        assert list(limiter.request_times) == [1, 10]

    def test_window_expires(self):
        clock = FakeClock()
        limiter = RateLimiter(1, 10, clock=clock, sleep=clock.sleep)
        limiter.wait_if_needed()
        clock.now = 10

        assert limiter.wait_if_needed() == 0

    def test_reset(self):
        clock = FakeClock()
        limiter = RateLimiter(1, 10, clock=clock, sleep=clock.sleep)
        limiter.wait_if_needed()
        limiter.reset()
        assert limiter.delay() == 0

    def test_rejects_zero_limit(self):
        with pytest.raises(ValueError):
            RateLimiter(0, 10)


class TestMetadataProvider:
    """Tests for the never-raising search wrapper."""

    def test_successful_search(self):
        provider = StubProvider(candidates=[])
        result = provider.search("Dune", "Frank Herbert")

        assert result.available
        assert result.candidates == []
        assert provider.calls == [("Dune", "Frank Herbert")]

    def test_provider_error_becomes_unavailable(self):
        result = StubProvider(error=ProviderTimeoutError("timed out after 5s")).search("Dune")

        assert not result.available
        assert result.error == "timed out after 5s"

    def test_unexpected_error_becomes_unavailable(self):
        result = StubProvider(error=RuntimeError("boom")).search("Dune")

        assert not result.available
        assert result.error == "RuntimeError: boom"

    def test_null_provider(self):
        with NullProvider() as provider:
            result = provider.search("Dune")
        assert result.available
        assert result.candidates == []


class TestGoogleBooksClient:
    """Tests for the Google Books client."""

    @pytest.fixture
    def session(self):
        return Mock()

    @pytest.fixture
    def client(self, session):
        return GoogleBooksClient(api_key="test-key", timeout=3, session=session)

    def test_build_query(self, client):
        assert client.build_query("Atomic Habits", "James Clear") == (
            "intitle:Atomic Habits inauthor:James Clear"
        )
        assert client.build_query("Atomic Habits", None) == "intitle:Atomic Habits"

    def test_search_returns_candidates(self, client, session):
        session.get.return_value = make_response(payload={"items": [GOOGLE_VOLUME]})

        result = client.search("Atomic Habits", "James Clear")

        assert result.available
        [candidate] = result.candidates
        assert candidate.candidate_id == "lFhbDwAAQBAJ"
        assert candidate.isbn_13 == "9780735211292"
        assert candidate.source == "google-books"

        _, kwargs = session.get.call_args
        assert kwargs["timeout"] == 3
        assert kwargs["params"]["q"] == "intitle:Atomic Habits inauthor:James Clear"
        assert kwargs["params"]["maxResults"] == 5
        assert kwargs["params"]["key"] == "test-key"

    def test_anonymous_requests_omit_key(self, session, monkeypatch):
        monkeypatch.delenv("GOOGLE_BOOKS_API_KEY", raising=False)
        session.get.return_value = make_response(payload={})
        client = GoogleBooksClient(timeout=3, session=session)

        result = client.search("Atomic Habits")

        assert result.candidates == []
        assert "key" not in session.get.call_args.kwargs["params"]

    def test_timeout(self, client, session):
        session.get.side_effect = requests.exceptions.Timeout()

        result = client.search("Atomic Habits")

        assert not result.available
        assert "timed out after 3s" in result.error

    def test_connection_error(self, client, session):
        session.get.side_effect = requests.exceptions.ConnectionError("refused")

        result = client.search("Atomic Habits")

        assert not result.available
        assert "request failed" in result.error

    def test_rate_limited(self, client, session):
        session.get.return_value = make_response(429, reason="Too Many Requests")
        result = client.search("Atomic Habits")
        assert result.error == "Google Books rate limit exceeded"

    def test_server_error(self, client, session):
        session.get.return_value = make_response(503, reason="Service Unavailable")
        result = client.search("Atomic Habits")
        assert result.error == "HTTP 503: Service Unavailable"

    def test_invalid_json(self, client, session):
        response = make_response()
        response.json.side_effect = ValueError("no json")
        session.get.return_value = response

        result = client.search("Atomic Habits")

        assert result.error == "Google Books returned invalid JSON"

    def test_close_closes_session(self, client, session):
        client.close()
        session.close.assert_called_once()


class TestOpenLibraryClient:
    """Tests for the Open Library client."""

    @pytest.fixture
    def session(self):
        return Mock()

    @pytest.fixture
    def client(self, session):
        return OpenLibraryClient(timeout=3, session=session)

    def test_search_returns_candidates(self, client, session):
        session.get.return_value = make_response(payload={"docs": [OPENLIBRARY_DOC]})

        result = client.search("Atomic Habits", "James Clear")

        [candidate] = result.candidates
        assert candidate.candidate_id == "OL17930368W"
        assert candidate.source == "openlibrary"
        params = session.get.call_args.kwargs["params"]
        assert params["title"] == "Atomic Habits"
        assert params["author"] == "James Clear"

    def test_falls_back_to_title_without_subtitle(self, client, session):
        session.get.side_effect = [
            make_response(payload={"docs": []}),
            make_response(payload={"docs": [OPENLIBRARY_DOC]}),
        ]

        result = client.search("Atomic Habits: Tiny Changes, Remarkable Results")

        assert len(result.candidates) == 1
        titles = [c.kwargs["params"]["title"] for c in session.get.call_args_list]
        assert titles == ["Atomic Habits: Tiny Changes, Remarkable Results", "Atomic Habits"]

    def test_title_variations(self, client):
        assert client._generate_title_variations("Money: A Suicide Note") == [
            "Money: A Suicide Note",
            "Money",
        ]
        assert client._generate_title_variations("Dune") == ["Dune"]

    def test_timeout(self, client, session):
        session.get.side_effect = requests.exceptions.Timeout()
        result = client.search("Dune")
        assert not result.available

    def test_rate_limited(self, client, session):
        response = make_response(429)
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
        session.get.return_value = response

        result = client.search("Dune")

        assert result.error == "Open Library rate limit exceeded"

    def test_sets_user_agent(self, session):
        OpenLibraryClient(timeout=3, session=session)
        session.headers.update.assert_called_once_with({"User-Agent": "kindle-notes/1.0"})


class TestNormalizers:
    """Tests for provider response normalizers."""

    def test_google_volume(self):
        candidate = GoogleBooksNormalizer().normalize(GOOGLE_VOLUME)

        assert candidate.title == "Atomic Habits"
        assert candidate.authors == ("James Clear",)
        assert candidate.isbn_13 == "9780735211292"
        assert candidate.cover_url == "https://books.google.com/content?id=lFhbDwAAQBAJ"

    def test_google_volume_without_id(self):
        assert GoogleBooksNormalizer().normalize({"volumeInfo": {"title": "X"}}) is None

    def test_google_volume_with_sparse_info(self):
        candidate = GoogleBooksNormalizer().normalize({"id": "v1"})

        assert candidate.title == "Unknown"
        assert candidate.authors == ()
        assert candidate.isbn_13 is None
        assert candidate.cover_url is None

    def test_openlibrary_doc(self):
        candidate = OpenLibraryNormalizer().normalize(OPENLIBRARY_DOC)

        assert candidate.candidate_id == "OL17930368W"
        assert candidate.authors == ("James Clear",)
        assert candidate.isbn_13 == "9780735211292"
        assert candidate.cover_url == "https://covers.openlibrary.org/b/id/8950543-L.jpg"

    def test_openlibrary_doc_without_key(self):
        assert OpenLibraryNormalizer().normalize({"title": "Dune"}) is None


class TestFactory:
    """Tests for provider selection."""

    def test_named_provider(self):
        assert isinstance(create_provider("none"), NullProvider)

    def test_provider_from_environment(self, monkeypatch):
        monkeypatch.setenv("METADATA_PROVIDER", "openlibrary")
        provider = create_provider()
        assert isinstance(provider, OpenLibraryClient)
        provider.close()

    def test_google_is_default(self, monkeypatch):
        monkeypatch.delenv("METADATA_PROVIDER", raising=False)
        provider = create_provider()
        assert isinstance(provider, GoogleBooksClient)
        provider.close()

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown metadata provider 'bogus'"):
            create_provider("bogus")
