from functools import lru_cache

from market_finder.config import SETTINGS
from market_finder.postal import PostalDirectory, load_postal_directory
from market_finder.search.orchestrator import MarketSearch, build_market_search


@lru_cache(maxsize=1)
def get_market_search() -> MarketSearch:
    return build_market_search(SETTINGS)


def get_postal_directory() -> PostalDirectory:
    return load_postal_directory()
