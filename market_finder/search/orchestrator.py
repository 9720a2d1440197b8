"""Search orchestration over the upstream site.

A request walks a fixed set of named stages. Each location stage returns either
``Success(items)`` or ``Empty(reason)`` and the dispatcher decides the next
stage from that tag alone::

    START -> [FAST_INDEX_SEARCH] -> SCRAPE_DISPATCH
          -> DIRECT | POSTAL_EXACT | CITY_RELAXED
          -> [POSTAL_POSTFILTER] -> [POSTAL_EXPANSION_FALLBACK]
          -> DEDUP -> ENRICH -> MAP -> [PERSIST] -> DONE

Failures of a single scrape, enrichment fetch or index query count as "no items
from that path" and never abort the search.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from market_finder.cache import InMemoryLastResults, LastResultsCache, build_results_cache
from market_finder.config import SETTINGS, Settings
from market_finder.db.repository import SqlListingRepository
from market_finder.filters import dedupe_candidates
from market_finder.geo import LatLon, city_to_coords, haversine, postal_to_coords
from market_finder.models import ListingCandidate, MarketResult, SearchCriteria
from market_finder.postal import (
    PostalDirectory,
    classify_location,
    load_postal_directory,
    postal_search_term,
)
from market_finder.price import parse_price
from market_finder.scraper.bazos import BazosScraper, ScrapeOptions, matches_location_text
from market_finder.scraper.batching import run_in_batches
from market_finder.scraper.client import HttpClient
from market_finder.scraper.enricher import DetailEnricher
from market_finder.search.index import SearchIndex, build_search_index


logger = logging.getLogger(__name__)

MILEAGE_RE = re.compile(r"(?<!\d)(\d{1,3}(?:[ .,]\d{3})+|\d{4,7})\s*(?:km|kilometr)", re.IGNORECASE)


class SearchState(str, Enum):
    START = "START"
    FAST_INDEX_SEARCH = "FAST_INDEX_SEARCH"
    SCRAPE_DISPATCH = "SCRAPE_DISPATCH"
    DIRECT = "DIRECT"
    POSTAL_EXACT = "POSTAL_EXACT"
    CITY_RELAXED = "CITY_RELAXED"
    POSTAL_POSTFILTER = "POSTAL_POSTFILTER"
    POSTAL_EXPANSION_FALLBACK = "POSTAL_EXPANSION_FALLBACK"
    DEDUP = "DEDUP"
    ENRICH = "ENRICH"
    MAP = "MAP"
    PERSIST = "PERSIST"
    DONE = "DONE"


@dataclass(frozen=True)
class Success:
    items: list


@dataclass(frozen=True)
class Empty:
    reason: str


StageResult = Success | Empty


@dataclass
class SearchOutcome:
    results: list[MarketResult]
    path: list[SearchState] = field(default_factory=list)
    source: str = "scrape"


class ListingRepository(Protocol):
    def upsert(self, result: MarketResult) -> None: ...


def _stage(items: list, reason: str) -> StageResult:
    return Success(items) if items else Empty(reason)


def parse_mileage(*texts: str | None) -> int | None:
    for text in texts:
        if not text:
            continue
        match = MILEAGE_RE.search(text)
        if match:
            return int(re.sub(r"\D", "", match.group(1)))
    return None


def _sort_value(result: MarketResult, key: str) -> float | None:
    if key == "date":
        return result.date.timestamp()
    if key == "price":
        return float(result.price) if result.price > 0 else None
    if key == "km":
        return None if result.km is None else float(result.km)
    if key == "distance":
        return result.distance
    return None


def sort_results(results: list[MarketResult], key: str | None, order: str = "asc") -> list[MarketResult]:
    """Stable sort on ``key``; results without a value go last in either order."""
    if not key:
        return list(results)
    known = [result for result in results if _sort_value(result, key) is not None]
    unknown = [result for result in results if _sort_value(result, key) is None]
    known.sort(key=lambda result: _sort_value(result, key), reverse=(order == "desc"))
    return known + unknown


class MarketSearch:
    def __init__(
        self,
        scraper: BazosScraper,
        enricher: DetailEnricher,
        *,
        directory: PostalDirectory | None = None,
        index: SearchIndex | None = None,
        cache: LastResultsCache | None = None,
        repository: ListingRepository | None = None,
        settings: Settings = SETTINGS,
    ) -> None:
        self._scraper = scraper
        self._enricher = enricher
        self._directory = directory or load_postal_directory()
        self._index = index
        self._cache = cache if cache is not None else InMemoryLastResults()
        self._repository = repository
        self._settings = settings
        self._persist_executor: ThreadPoolExecutor | None = None

    @property
    def cache(self) -> LastResultsCache:
        return self._cache

    def search(self, criteria: SearchCriteria) -> list[MarketResult]:
        return self.run(criteria).results

    def run(self, criteria: SearchCriteria) -> SearchOutcome:
        path = [SearchState.START]
        page_size = self._settings.clamp_page_size(criteria.page_size)

        if self._index is not None:
            path.append(SearchState.FAST_INDEX_SEARCH)
            fast = self._fast_index(criteria)
            if isinstance(fast, Success):
                results = fast.items[:page_size]
                self._cache.set(results)
                path.append(SearchState.DONE)
                logger.info("Search served from index: hits=%s returned=%s", len(fast.items), len(results))
                return SearchOutcome(results=results, path=path, source="index")
            logger.info("Index path empty (%s), scraping", fast.reason)

        path.append(SearchState.SCRAPE_DISPATCH)
        stage = self._dispatch(criteria, page_size, path)
        candidates = stage.items if isinstance(stage, Success) else []
        if isinstance(stage, Empty):
            logger.info("Scrape produced nothing: %s", stage.reason)

        path.append(SearchState.DEDUP)
        candidates = dedupe_candidates(candidates)

        path.append(SearchState.ENRICH)
        candidates = self._enricher.enrich_many(candidates)

        path.append(SearchState.MAP)
        origin = self._origin(criteria)
        results = [self._to_result(candidate, origin) for candidate in candidates]
        results = [result for result in results if result.title]
        results = sort_results(results, criteria.sort, criteria.order)[:page_size]

        if criteria.save_to_db and self._repository is not None and results:
            path.append(SearchState.PERSIST)
            self._persist(results)

        self._cache.set(results)
        path.append(SearchState.DONE)
        logger.info(
            "Search summary: keywords=%r location=%r strict=%s returned=%s path=%s",
            criteria.keywords,
            criteria.location,
            criteria.strict_location,
            len(results),
            "->".join(state.value for state in path),
        )
        return SearchOutcome(results=results, path=path)

    def close(self) -> None:
        if self._persist_executor is not None:
            self._persist_executor.shutdown(wait=True)
            self._persist_executor = None

    def _fast_index(self, criteria: SearchCriteria) -> StageResult:
        try:
            hits = self._index.search(criteria.keywords, location=criteria.location)
        except Exception as exc:
            logger.warning("Index search failed, falling back to scraping: %s", exc)
            return Empty("index error")
        return _stage(hits, "index returned no hits")

    def _dispatch(self, criteria: SearchCriteria, page_size: int, path: list[SearchState]) -> StageResult:
        kind = classify_location(criteria.location)
        limit = max(page_size, self._settings.default_extract_limit)

        if kind == "empty":
            path.append(SearchState.DIRECT)
            return self._direct(criteria, limit)

        if kind == "postal":
            path.append(SearchState.POSTAL_EXACT)
            return self._postal_exact(criteria, limit)

        path.append(SearchState.CITY_RELAXED)
        relaxed = self._city_relaxed(criteria, limit)
        if isinstance(relaxed, Success):
            path.append(SearchState.POSTAL_POSTFILTER)
            return self._postal_postfilter(criteria, relaxed.items)

        path.append(SearchState.POSTAL_EXPANSION_FALLBACK)
        return self._postal_expansion(criteria, page_size)

    def _scrape(self, options: ScrapeOptions) -> list[ListingCandidate]:
        try:
            return self._scraper.scrape(options)
        except Exception as exc:
            logger.warning("Scrape failed for %r/%r: %s", options.keywords, options.location, exc)
            return []

    def _direct(self, criteria: SearchCriteria, limit: int) -> StageResult:
        options = ScrapeOptions(keywords=criteria.keywords, strict_location=criteria.strict_location, limit=limit)
        items = self._scrape(options)
        return _stage(items, "direct scrape returned nothing")

    def _postal_exact(self, criteria: SearchCriteria, limit: int) -> StageResult:
        term = postal_search_term(criteria.location)
        options = ScrapeOptions(
            keywords=criteria.keywords,
            location=term,
            strict_location=criteria.strict_location,
            postal_intent=True,
            limit=limit,
        )
        return _stage(self._scrape(options), f"no listings for postal {term}")

    def _city_relaxed(self, criteria: SearchCriteria, limit: int) -> StageResult:
        options = ScrapeOptions(keywords=criteria.keywords, location=criteria.location.strip(), limit=limit)
        return _stage(self._scrape(options), f"relaxed scrape for {criteria.location!r} returned nothing")

    def _postal_postfilter(self, criteria: SearchCriteria, relaxed: list[ListingCandidate]) -> StageResult:
        prefixes = set(self._directory.lookup_prefixes(criteria.location))

        def resolve(candidate: ListingCandidate) -> ListingCandidate | None:
            postal = candidate.postal_code
            if not postal and prefixes:
                postal = self._enricher.lookup_postal(candidate.url)
            if postal:
                candidate = candidate.with_fields(postal_code=postal)
                if prefixes:
                    return candidate if postal[:3] in prefixes else None
            return candidate if matches_location_text(candidate, criteria.location) else None

        outcomes = run_in_batches(
            relaxed,
            resolve,
            concurrency=self._settings.detail_concurrency,
            batch_pause=self._settings.batch_pause_seconds,
        )
        kept = [outcome for outcome in outcomes if isinstance(outcome, ListingCandidate)]
        logger.info(
            "Postal post-filter: location=%r prefixes=%s before=%s after=%s",
            criteria.location,
            sorted(prefixes),
            len(relaxed),
            len(kept),
        )
        if kept:
            return Success(kept)
        if criteria.strict_location:
            return Empty(f"strict location {criteria.location!r} matched no listings")
        return Success(relaxed)

    def _postal_expansion(self, criteria: SearchCriteria, page_size: int) -> StageResult:
        codes = self._directory.codes_for_city(criteria.location)
        if not codes:
            return Empty(f"no postal codes known for {criteria.location!r}")

        initial_count = self._settings.postal_initial_codes
        extra = codes[initial_count : initial_count + self._settings.postal_extra_codes]

        def scrape_code(code: str) -> list[ListingCandidate]:
            options = ScrapeOptions(
                keywords=criteria.keywords,
                location=code,
                strict_location=criteria.strict_location,
                postal_intent=True,
                limit=page_size,
            )
            return self._scrape(options)

        aggregated: list[ListingCandidate] = []
        for outcome in run_in_batches(
            codes[:initial_count],
            scrape_code,
            concurrency=self._settings.detail_concurrency,
            batch_pause=self._settings.batch_pause_seconds,
        ):
            if isinstance(outcome, list):
                aggregated.extend(outcome)
        aggregated = dedupe_candidates(aggregated)

        for code in extra:
            if len(aggregated) >= page_size:
                break
            aggregated = dedupe_candidates(aggregated + scrape_code(code))

        logger.info(
            "Postal expansion: location=%r codes=%s found=%s",
            criteria.location,
            min(len(codes), initial_count + len(extra)),
            len(aggregated),
        )
        return _stage(aggregated, f"postal expansion for {criteria.location!r} found nothing")

    def _origin(self, criteria: SearchCriteria) -> LatLon | None:
        if criteria.origin_lat is not None and criteria.origin_lon is not None:
            return (criteria.origin_lat, criteria.origin_lon)
        if criteria.origin_postal:
            return postal_to_coords(criteria.origin_postal, self._directory)
        kind = classify_location(criteria.location)
        if kind == "postal":
            return postal_to_coords(criteria.location, self._directory)
        if kind == "city":
            return city_to_coords(criteria.location)
        return None

    def _to_result(self, candidate: ListingCandidate, origin: LatLon | None) -> MarketResult:
        images = list(candidate.images) or ([candidate.thumbnail_url] if candidate.thumbnail_url else [])
        distance = None
        if origin is not None:
            target = None
            if candidate.postal_code:
                target = postal_to_coords(candidate.postal_code, self._directory)
            if target is None:
                target = city_to_coords(candidate.raw_location)
            if target is not None:
                distance = round(haversine(origin, target), 1)

        return MarketResult(
            title=candidate.title,
            price=parse_price(candidate.raw_price, min_bare_price=self._settings.min_bare_price),
            location=candidate.raw_location or candidate.postal_code,
            url=candidate.url,
            date=candidate.captured_at,
            thumbnail=candidate.thumbnail_url or None,
            images=images,
            description=candidate.description or None,
            distance=distance,
            postal=candidate.postal_code or None,
            km=parse_mileage(candidate.title, candidate.description),
        )

    def _persist(self, results: list[MarketResult]) -> None:
        if self._persist_executor is None:
            self._persist_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="persist")
        for result in results:
            self._persist_executor.submit(self._persist_one, result)

    def _persist_one(self, result: MarketResult) -> None:
        try:
            self._repository.upsert(result)
        except Exception as exc:
            logger.warning("Persisting %s failed: %s", result.url, exc)


def build_market_search(settings: Settings = SETTINGS) -> MarketSearch:
    client = HttpClient(settings)
    repository = None
    if settings.database_url:
        try:
            repository = SqlListingRepository.from_url(settings.database_url)
        except SQLAlchemyError as exc:
            logger.warning("Persistence disabled, database unavailable: %s", exc)

    return MarketSearch(
        BazosScraper(client, settings),
        DetailEnricher(client, settings),
        index=build_search_index(settings),
        cache=build_results_cache(settings),
        repository=repository,
        settings=settings,
    )
