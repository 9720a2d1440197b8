from market_finder.scraper.bazos import BazosScraper, ScrapeOptions
from market_finder.scraper.client import FetchResult, Fetcher, HttpClient, HttpRequestError
from market_finder.scraper.enricher import DetailEnricher
from market_finder.scraper.extractor import extract_listings

__all__ = [
    "BazosScraper",
    "DetailEnricher",
    "FetchResult",
    "Fetcher",
    "HttpClient",
    "HttpRequestError",
    "ScrapeOptions",
    "extract_listings",
]
