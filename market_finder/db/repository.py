import logging

from sqlalchemy import Engine
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session, sessionmaker

from market_finder.db.models import Base, MarketListing
from market_finder.db.session import build_engine, build_session_factory
from market_finder.models import MarketResult, utcnow


logger = logging.getLogger(__name__)

UPDATABLE_COLUMNS = (
    "title",
    "price",
    "location",
    "postal",
    "description",
    "thumbnail",
    "images",
    "km",
    "distance",
    "last_seen_at",
)


def init_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def listing_row(result: MarketResult) -> dict[str, object]:
    return {
        "url": result.url,
        "title": result.title[:512],
        "price": max(0, result.price),
        "location": result.location or None,
        "postal": result.postal,
        "description": result.description,
        "thumbnail": result.thumbnail,
        "images": list(result.images) or None,
        "km": result.km,
        "distance": result.distance,
        "published_at": result.date,
        "last_seen_at": utcnow(),
    }


class SqlListingRepository:
    """Upserts search results keyed on the listing url."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @classmethod
    def from_url(cls, database_url: str) -> "SqlListingRepository":
        engine = build_engine(database_url)
        init_schema(engine)
        return cls(build_session_factory(engine))

    def upsert(self, result: MarketResult) -> None:
        if not result.url:
            return
        stmt = pg_insert(MarketListing).values(listing_row(result))
        stmt = stmt.on_conflict_do_update(
            index_elements=[MarketListing.url],
            set_={column: getattr(stmt.excluded, column) for column in UPDATABLE_COLUMNS},
        )
        with self._session_factory() as session:
            session.execute(stmt)
            session.commit()
        logger.debug("Upserted listing %s", result.url)
