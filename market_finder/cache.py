import json
import logging
import threading
from typing import Protocol

import redis

from market_finder.config import SETTINGS, Settings
from market_finder.models import MarketResult


logger = logging.getLogger(__name__)


class LastResultsCache(Protocol):
    def get(self) -> list[MarketResult]: ...

    def set(self, results: list[MarketResult]) -> None: ...


class InMemoryLastResults:
    """Single slot, overwritten wholesale by each search (last write wins)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: tuple[MarketResult, ...] = ()

    def get(self) -> list[MarketResult]:
        with self._lock:
            return list(self._results)

    def set(self, results: list[MarketResult]) -> None:
        with self._lock:
            self._results = tuple(results)


class RedisLastResults:
    def __init__(self, client: redis.Redis, *, key: str, ttl_seconds: int) -> None:
        self._client = client
        self._key = key
        self._ttl_seconds = ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisLastResults":
        client = redis.Redis.from_url(settings.redis_url)
        return cls(client, key=settings.results_cache_key, ttl_seconds=settings.results_cache_ttl_seconds)

    def get(self) -> list[MarketResult]:
        try:
            raw = self._client.get(self._key)
        except redis.RedisError as exc:
            logger.warning("Redis read failed for %s: %s", self._key, exc)
            return []
        if not raw:
            return []
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            logger.warning("Discarding unreadable cached results under %s: %s", self._key, exc)
            return []
        return [MarketResult.from_dict(item) for item in payload if isinstance(item, dict)]

    def set(self, results: list[MarketResult]) -> None:
        payload = json.dumps([result.to_dict() for result in results], ensure_ascii=False)
        try:
            self._client.setex(self._key, self._ttl_seconds, payload)
        except redis.RedisError as exc:
            logger.warning("Redis write failed for %s: %s", self._key, exc)


def build_results_cache(settings: Settings = SETTINGS) -> LastResultsCache:
    if settings.redis_url:
        logger.info("Using Redis last-results cache key=%s", settings.results_cache_key)
        return RedisLastResults.from_settings(settings)
    return InMemoryLastResults()
