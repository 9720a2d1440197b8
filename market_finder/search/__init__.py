from market_finder.search.index import MeiliSearchIndex, SearchIndex, build_search_index
from market_finder.search.orchestrator import MarketSearch, SearchOutcome, build_market_search

__all__ = [
    "MarketSearch",
    "MeiliSearchIndex",
    "SearchIndex",
    "SearchOutcome",
    "build_market_search",
    "build_search_index",
]
