from market_finder.db.models import Base, MarketListing
from market_finder.db.repository import SqlListingRepository, init_schema

__all__ = ["Base", "MarketListing", "SqlListingRepository", "init_schema"]
