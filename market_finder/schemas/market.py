from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from market_finder.models import MarketResult, PostalSuggestion, SearchCriteria


class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    keywords: str = Field("", max_length=120)
    location: str = Field("", max_length=120)
    strict_location: bool = Field(False, alias="strictLocation")
    page_size: int | None = Field(None, alias="pageSize")
    filter_method: Literal["dedupe", "random", "relevance"] = Field("dedupe", alias="filterMethod")
    sort: Literal["date", "price", "km", "distance"] | None = None
    order: Literal["asc", "desc"] = "asc"
    origin_postal: str | None = Field(None, alias="originPostal", max_length=10)
    origin_lat: float | None = Field(None, alias="originLat", ge=-90, le=90)
    origin_lon: float | None = Field(None, alias="originLon", ge=-180, le=180)
    save_to_db: bool = Field(False, alias="saveToDb")

    def to_criteria(self) -> SearchCriteria:
        return SearchCriteria(
            keywords=self.keywords.strip(),
            location=self.location.strip(),
            strict_location=self.strict_location,
            page_size=self.page_size,
            save_to_db=self.save_to_db,
            sort=self.sort,
            order=self.order,
            origin_postal=self.origin_postal,
            origin_lat=self.origin_lat,
            origin_lon=self.origin_lon,
        )


class MarketResultOut(BaseModel):
    title: str
    price: int
    location: str
    url: str
    date: datetime
    thumbnail: str | None = None
    images: list[str] = []
    description: str | None = None
    distance: float | None = None
    postal: str | None = None
    km: int | None = None

    @classmethod
    def from_result(cls, result: MarketResult) -> "MarketResultOut":
        return cls(**result.to_dict())


class SearchResponse(BaseModel):
    ok: bool = True
    count: int
    results: list[MarketResultOut]


class PostalSuggestionOut(BaseModel):
    code: str
    city: str
    label: str

    @classmethod
    def from_suggestion(cls, suggestion: PostalSuggestion) -> "PostalSuggestionOut":
        return cls(code=suggestion.code, city=suggestion.city, label=f"{suggestion.code} {suggestion.city}")


class PostalSuggestResponse(BaseModel):
    ok: bool = True
    suggestions: list[PostalSuggestionOut]
