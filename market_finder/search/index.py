import logging
from datetime import datetime, timezone
from typing import Protocol

import requests

from market_finder.config import SETTINGS, Settings
from market_finder.models import MarketResult, utcnow
from market_finder.postal import classify_location, postal_search_term


logger = logging.getLogger(__name__)


class SearchIndex(Protocol):
    def search(self, query: str, *, location: str = "") -> list[MarketResult]: ...


def _parse_date(value: object) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000 if value > 10**11 else value, tz=timezone.utc)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return utcnow()


def _to_price(value: object) -> int:
    try:
        return max(0, int(float(value)))
    except (TypeError, ValueError):
        return 0


def hit_to_result(hit: dict) -> MarketResult:
    images = hit.get("images")
    if not isinstance(images, list):
        images = [hit["image"]] if hit.get("image") else []
    return MarketResult(
        title=str(hit.get("title") or ""),
        price=_to_price(hit.get("price")),
        location=str(hit.get("city") or hit.get("locality") or ""),
        url=str(hit.get("url") or ""),
        date=_parse_date(hit.get("pubDate") or hit.get("publishedDate")),
        thumbnail=(images[0] if images else None),
        images=[str(image) for image in images],
        description=str(hit.get("description") or hit.get("metaDescription") or "") or None,
        postal=str(hit.get("postal") or "") or None,
    )


def location_filter(location: str) -> str | None:
    if classify_location(location) != "postal":
        return None
    term = postal_search_term(location)
    return f'postal STARTS WITH "{term}"' if term else None


class MeiliSearchIndex:
    """Meilisearch over its REST search endpoint; one short attempt, no retries."""

    def __init__(self, settings: Settings = SETTINGS, session: requests.Session | None = None) -> None:
        self._settings = settings
        self._session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._settings.meili_key:
            headers["Authorization"] = f"Bearer {self._settings.meili_key}"
        return headers

    def search(self, query: str, *, location: str = "") -> list[MarketResult]:
        url = f"{self._settings.meili_host.rstrip('/')}/indexes/{self._settings.meili_index}/search"
        body: dict[str, object] = {"q": query or location or "", "limit": self._settings.meili_limit}
        search_filter = location_filter(location)
        if search_filter:
            body["filter"] = search_filter

        response = self._session.post(
            url,
            json=body,
            headers=self._headers(),
            timeout=self._settings.index_timeout_seconds,
        )
        response.raise_for_status()
        hits = response.json().get("hits") or []
        results = [hit_to_result(hit) for hit in hits if isinstance(hit, dict)]
        return [result for result in results if result.title]


def build_search_index(settings: Settings = SETTINGS) -> SearchIndex | None:
    if not settings.index_enabled:
        return None
    return MeiliSearchIndex(settings)
