import logging
from dataclasses import dataclass
from urllib.parse import urlencode

from market_finder.config import SETTINGS, Settings
from market_finder.models import ListingCandidate
from market_finder.price import repair_price
from market_finder.scraper.client import Fetcher, HttpRequestError
from market_finder.scraper.extractor import extract_listings
from market_finder.text import normalize_for_match


logger = logging.getLogger(__name__)

SEARCH_PATH = "/search.php"


@dataclass(frozen=True)
class ScrapeOptions:
    keywords: str = ""
    location: str = ""
    strict_location: bool = False
    postal_intent: bool = False
    limit: int | None = None


def _compact(value: str) -> str:
    return "".join(value.split())


def matches_location_text(candidate: ListingCandidate, wanted: str) -> bool:
    want = normalize_for_match(wanted)
    if not want:
        return True
    return any(
        want in normalize_for_match(value)
        for value in (candidate.raw_location, candidate.title, candidate.description)
    )


def matches_postal(candidate: ListingCandidate, wanted: str) -> bool:
    want = _compact(wanted)
    if not want:
        return True
    if candidate.postal_code and candidate.postal_code.startswith(want):
        return True
    return want in _compact(candidate.raw_location)


class BazosScraper:
    """One upstream search invocation: fetch, extract, location policy, price repair."""

    def __init__(self, fetcher: Fetcher, settings: Settings = SETTINGS) -> None:
        self._fetcher = fetcher
        self._settings = settings

    def search_url(self, options: ScrapeOptions) -> str:
        params = {"hledat": options.keywords or ""}
        if options.location:
            params["hlokalita"] = options.location
            if options.strict_location:
                params["humkreis"] = "0"
            elif options.postal_intent:
                params["humkreis"] = str(self._settings.postal_radius_km)
        return f"{self._settings.base_url}{SEARCH_PATH}?{urlencode(params)}"

    def scrape(self, options: ScrapeOptions) -> list[ListingCandidate]:
        url = self.search_url(options)
        try:
            result = self._fetcher.fetch(url, timeout=self._settings.request_timeout_seconds)
        except HttpRequestError as exc:
            logger.warning("Search fetch failed for %s: %s", url, exc)
            return []

        candidates = extract_listings(
            result.body,
            base_url=result.url or url,
            limit=options.limit or self._settings.default_extract_limit,
        )
        extracted = len(candidates)
        candidates = self.apply_location_policy(candidates, options)

        min_bare_price = self._settings.min_bare_price
        repaired = [
            candidate.with_fields(raw_price=repair_price(candidate.raw_price, min_bare_price=min_bare_price))
            for candidate in candidates
        ]
        logger.info(
            "Scrape summary: url=%s extracted=%s kept=%s strict=%s postal=%s",
            url,
            extracted,
            len(repaired),
            options.strict_location,
            options.postal_intent,
        )
        return repaired

    def apply_location_policy(
        self,
        candidates: list[ListingCandidate],
        options: ScrapeOptions,
    ) -> list[ListingCandidate]:
        """Strict searches trust an empty filter result; relaxed ones fall back below ``min_accept``."""
        if not options.location or not candidates:
            return candidates

        if options.postal_intent:
            filtered = [c for c in candidates if matches_postal(c, options.location)]
        else:
            filtered = [c for c in candidates if matches_location_text(c, options.location)]

        if options.strict_location:
            if not filtered:
                logger.info("Strict location %r removed all %s results", options.location, len(candidates))
            return filtered

        if len(filtered) >= self._settings.min_accept:
            return filtered
        logger.debug(
            "Location filter kept %s/%s below min_accept=%s, keeping unfiltered set",
            len(filtered),
            len(candidates),
            self._settings.min_accept,
        )
        return candidates
