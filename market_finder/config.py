import os
from dataclasses import dataclass


def _env(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name, default)
    if value is None:
        return None
    value = value.strip()
    return value or default


def _env_int(name: str, default: int) -> int:
    value = _env(name, str(default))
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise RuntimeError(f"Invalid integer env var {name}: {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = _env(name, str(default))
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise RuntimeError(f"Invalid number env var {name}: {value!r}") from exc


def _env_int_tuple(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    value = _env(name)
    if not value:
        return default
    try:
        return tuple(int(part) for part in value.split(",") if part.strip())
    except ValueError as exc:
        raise RuntimeError(f"Invalid integer list env var {name}: {value!r}") from exc


@dataclass(frozen=True)
class Settings:
    base_url: str = "https://auto.bazos.cz"
    user_agent: str = "Mozilla/5.0 (compatible; MarketFinder/1.0)"
    request_timeout_seconds: float = 15.0
    detail_timeout_seconds: float = 10.0
    index_timeout_seconds: float = 2.0
    max_retries: int = 2
    backoff_seconds: float = 0.2
    batch_pause_seconds: float = 0.0

    min_bare_price: int = 10_000
    min_accept: int = 3
    detail_concurrency: int = 3
    default_extract_limit: int = 20
    postal_initial_codes: int = 16
    postal_extra_codes: int = 50
    postal_radius_km: int = 20
    random_sample_size: int = 20
    allowed_page_sizes: tuple[int, ...] = (10, 20, 50, 100)
    default_page_size: int = 10

    meili_host: str | None = None
    meili_key: str | None = None
    meili_index: str = "listings"
    meili_limit: int = 50

    redis_url: str | None = None
    results_cache_key: str = "market_finder:last_results"
    results_cache_ttl_seconds: int = 3600

    database_url: str | None = None
    log_level: str = "INFO"

    @property
    def index_enabled(self) -> bool:
        return bool(self.meili_host)

    def clamp_page_size(self, value: int | None) -> int:
        if value in self.allowed_page_sizes:
            return int(value)
        return self.default_page_size


def load_settings() -> Settings:
    return Settings(
        base_url=_env("MARKET_BASE_URL", "https://auto.bazos.cz").rstrip("/"),
        user_agent=_env("MARKET_USER_AGENT", Settings.user_agent),
        request_timeout_seconds=_env_float("MARKET_REQUEST_TIMEOUT_SECONDS", 15.0),
        detail_timeout_seconds=_env_float("MARKET_DETAIL_TIMEOUT_SECONDS", 10.0),
        index_timeout_seconds=_env_float("MEILI_TIMEOUT_SECONDS", 2.0),
        max_retries=_env_int("MARKET_MAX_RETRIES", 2),
        backoff_seconds=_env_float("MARKET_BACKOFF_SECONDS", 0.2),
        batch_pause_seconds=_env_float("MARKET_BATCH_PAUSE_SECONDS", 0.0),
        min_bare_price=_env_int("MARKET_MIN_BARE_PRICE", 10_000),
        min_accept=_env_int("MARKET_MIN_ACCEPT", 3),
        detail_concurrency=_env_int("MARKET_DETAIL_CONCURRENCY", 3),
        default_extract_limit=_env_int("MARKET_EXTRACT_LIMIT", 20),
        postal_initial_codes=_env_int("MARKET_POSTAL_INITIAL_CODES", 16),
        postal_extra_codes=_env_int("MARKET_POSTAL_EXTRA_CODES", 50),
        postal_radius_km=_env_int("MARKET_POSTAL_RADIUS_KM", 20),
        random_sample_size=_env_int("MARKET_RANDOM_SAMPLE_SIZE", 20),
        allowed_page_sizes=_env_int_tuple("MARKET_PAGE_SIZES", (10, 20, 50, 100)),
        default_page_size=_env_int("MARKET_DEFAULT_PAGE_SIZE", 10),
        meili_host=_env("MEILI_HOST"),
        meili_key=_env("MEILI_KEY"),
        meili_index=_env("MEILI_INDEX", "listings"),
        meili_limit=_env_int("MEILI_LIMIT", 50),
        redis_url=_env("REDIS_URL"),
        results_cache_key=_env("MARKET_RESULTS_CACHE_KEY", "market_finder:last_results"),
        results_cache_ttl_seconds=_env_int("MARKET_RESULTS_CACHE_TTL_SECONDS", 3600),
        database_url=_env("DATABASE_URL"),
        log_level=_env("LOG_LEVEL", "INFO").upper(),
    )


SETTINGS = load_settings()
