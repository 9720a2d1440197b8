from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Literal


LocationKind = Literal["postal", "city", "empty"]
FilterMethod = Literal["dedupe", "random", "relevance"]
SortKey = Literal["date", "price", "km", "distance"]
SortOrder = Literal["asc", "desc"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ListingCandidate:
    title: str
    url: str
    raw_price: str = ""
    raw_location: str = ""
    description: str = ""
    thumbnail_url: str = ""
    postal_code: str = ""
    images: tuple[str, ...] = ()
    captured_at: datetime = field(default_factory=utcnow)

    def with_fields(self, **changes: object) -> "ListingCandidate":
        return replace(self, **changes)


@dataclass
class MarketResult:
    title: str
    price: int
    location: str
    url: str
    date: datetime
    thumbnail: str | None = None
    images: list[str] = field(default_factory=list)
    description: str | None = None
    distance: float | None = None
    postal: str | None = None
    km: int | None = None

    def to_dict(self) -> dict[str, object]:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "MarketResult":
        raw_date = data.get("date")
        if isinstance(raw_date, datetime):
            date = raw_date
        elif isinstance(raw_date, str) and raw_date:
            try:
                date = datetime.fromisoformat(raw_date)
            except ValueError:
                date = utcnow()
        else:
            date = utcnow()

        return cls(
            title=str(data.get("title") or ""),
            price=int(data.get("price") or 0),
            location=str(data.get("location") or ""),
            url=str(data.get("url") or ""),
            date=date,
            thumbnail=data.get("thumbnail") or None,
            images=list(data.get("images") or []),
            description=data.get("description") or None,
            distance=data.get("distance"),
            postal=data.get("postal") or None,
            km=data.get("km"),
        )


@dataclass(frozen=True)
class PostalSuggestion:
    code: str
    city: str


@dataclass
class SearchCriteria:
    keywords: str = ""
    location: str = ""
    strict_location: bool = False
    page_size: int | None = None
    save_to_db: bool = False
    sort: SortKey | None = None
    order: SortOrder = "asc"
    origin_postal: str | None = None
    origin_lat: float | None = None
    origin_lon: float | None = None
