import threading
from pathlib import Path

import pytest

from market_finder.config import Settings
from market_finder.models import ListingCandidate, MarketResult, PostalSuggestion
from market_finder.postal import PostalDirectory
from market_finder.scraper.client import FetchResult, HttpRequestError


FIXTURES = Path(__file__).parent / "fixtures"


def read_fixture(name: str) -> str:
    return (FIXTURES / name).read_text(encoding="utf-8")


class FakeFetcher:
    """Serves canned bodies by url; unknown urls fail like a 404."""

    def __init__(self, pages: dict[str, str] | None = None) -> None:
        self.pages = dict(pages or {})
        self.calls: list[str] = []
        self.attempts: list[int | None] = []
        self._lock = threading.Lock()

    def fetch(self, url: str, *, headers=None, timeout=None, attempts=None) -> FetchResult:
        with self._lock:
            self.calls.append(url)
            self.attempts.append(attempts)
        body = self.pages.get(url)
        if body is None:
            raise HttpRequestError("HTTP 404", url=url, status_code=404, error_kind="http_4xx")
        return FetchResult(status=200, body=body, url=url)


class FakeScraper:
    """Returns listings from ``responder(options)`` and records every invocation."""

    def __init__(self, responder) -> None:
        self.responder = responder
        self.calls = []
        self._lock = threading.Lock()

    def scrape(self, options):
        with self._lock:
            self.calls.append(options)
        return list(self.responder(options))


class FakeEnricher:
    def __init__(self, postal_by_url: dict[str, str] | None = None) -> None:
        self.postal_by_url = dict(postal_by_url or {})
        self.enriched_batches: list[list[ListingCandidate]] = []
        self.postal_lookups: list[str] = []
        self._lock = threading.Lock()

    def enrich_many(self, candidates):
        self.enriched_batches.append(list(candidates))
        return list(candidates)

    def lookup_postal(self, url: str) -> str:
        with self._lock:
            self.postal_lookups.append(url)
        return self.postal_by_url.get(url, "")


class FakeIndex:
    def __init__(self, hits=None, error: Exception | None = None) -> None:
        self.hits = list(hits or [])
        self.error = error
        self.queries: list[tuple[str, str]] = []

    def search(self, query: str, *, location: str = "") -> list[MarketResult]:
        self.queries.append((query, location))
        if self.error is not None:
            raise self.error
        return list(self.hits)


class FakeRepository:
    def __init__(self, fail_urls: set[str] | None = None) -> None:
        self.fail_urls = set(fail_urls or ())
        self.saved: list[MarketResult] = []

    def upsert(self, result: MarketResult) -> None:
        if result.url in self.fail_urls:
            raise RuntimeError("database is down")
        self.saved.append(result)


def make_candidate(index: int, **overrides) -> ListingCandidate:
    values = {
        "title": f"Škoda Octavia {index}",
        "url": f"https://auto.bazos.cz/inzerat/{index}/octavia.php",
        "raw_price": "150 000 Kč",
        "raw_location": "Praha",
        "thumbnail_url": f"https://www.bazoscdn.cz/img/{index}.jpg",
    }
    values.update(overrides)
    return ListingCandidate(**values)


@pytest.fixture
def settings() -> Settings:
    return Settings(base_url="https://auto.bazos.cz", backoff_seconds=0.0)


@pytest.fixture
def directory() -> PostalDirectory:
    return PostalDirectory(
        [
            PostalSuggestion("27601", "Mělník"),
            PostalSuggestion("27711", "Neratovice"),
            PostalSuggestion("27724", "Vysoká"),
            PostalSuggestion("27801", "Kralupy nad Vltavou"),
            PostalSuggestion("11000", "Praha 1"),
            PostalSuggestion("12000", "Praha 2"),
            PostalSuggestion("60200", "Brno"),
            PostalSuggestion("61200", "Brno"),
        ]
    )


@pytest.fixture
def search_page_html() -> str:
    return read_fixture("search_page.html")


@pytest.fixture
def detail_page_html() -> str:
    return read_fixture("detail_page.html")
