import logging

from fastapi import APIRouter, Depends, Query

from market_finder.api.deps import get_market_search, get_postal_directory
from market_finder.config import SETTINGS
from market_finder.filters import filter_results
from market_finder.postal import PostalDirectory
from market_finder.schemas.market import (
    MarketResultOut,
    PostalSuggestionOut,
    PostalSuggestResponse,
    SearchRequest,
    SearchResponse,
)
from market_finder.search.orchestrator import MarketSearch


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["market"])


@router.post("/search", response_model=SearchResponse)
def search(payload: SearchRequest, market: MarketSearch = Depends(get_market_search)) -> SearchResponse:
    results = market.search(payload.to_criteria())
    results = filter_results(
        results,
        payload.filter_method,
        payload.keywords,
        sample_size=SETTINGS.random_sample_size,
    )
    return SearchResponse(count=len(results), results=[MarketResultOut.from_result(item) for item in results])


@router.get("/results", response_model=SearchResponse)
def last_results(market: MarketSearch = Depends(get_market_search)) -> SearchResponse:
    results = market.cache.get()
    return SearchResponse(count=len(results), results=[MarketResultOut.from_result(item) for item in results])


@router.get("/postal/suggest", response_model=PostalSuggestResponse)
def suggest_postal(
    q: str = Query("", max_length=120),
    directory: PostalDirectory = Depends(get_postal_directory),
) -> PostalSuggestResponse:
    suggestions = directory.suggest(q)
    logger.info("Postal suggest q=%r suggestions=%s", q, len(suggestions))
    return PostalSuggestResponse(suggestions=[PostalSuggestionOut.from_suggestion(item) for item in suggestions])
