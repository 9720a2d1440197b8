"""Listing extraction from search result pages.

Listing templates on the site drift over time, so every field is read through an
ordered tuple of small strategies. Each strategy takes a DOM node and returns the
field text or ``None``; the first hit wins.
"""

import logging
import re
from datetime import datetime
from typing import Callable, Iterable
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from market_finder.models import ListingCandidate, utcnow
from market_finder.price import find_currency_price
from market_finder.text import normalize_text


logger = logging.getLogger(__name__)

Strategy = Callable[[Tag], str | None]

TITLE_ANCHOR_SELECTORS = ("h2.nadpis a", ".inzeratynadpis a", ".nadpis a")
DETAIL_URL_RE = re.compile(r"/inzerat/", re.IGNORECASE)

MIN_LIMIT = 5
MAX_LIMIT = 50
DEFAULT_LIMIT = 20
MAX_ANCESTOR_DEPTH = 6
MAX_CONTAINER_IMAGES = 4


def _node_text(node: Tag | None) -> str | None:
    if node is None:
        return None
    return normalize_text(node.get_text(" ", strip=True)) or None


def select_text(selector: str) -> Strategy:
    def strategy(node: Tag) -> str | None:
        return _node_text(node.select_one(selector))

    strategy.__name__ = f"select_text({selector!r})"
    return strategy


def first_match(strategies: Iterable[Strategy], node: Tag) -> str | None:
    for strategy in strategies:
        value = strategy(node)
        if value:
            return value
    return None


PRICE_STRATEGIES: tuple[Strategy, ...] = tuple(
    select_text(selector) for selector in (".inzeratycena", ".cena", ".price", ".velkaCena", ".inzerat-cena")
)
LOCATION_STRATEGIES: tuple[Strategy, ...] = tuple(
    select_text(selector) for selector in (".inzeratylok", ".mesto", ".locality", ".umisteni")
)
DESCRIPTION_STRATEGIES: tuple[Strategy, ...] = tuple(
    select_text(selector) for selector in (".popis", ".description", ".inzerat-popis")
)


def clamp_limit(limit: int | None) -> int:
    return max(MIN_LIMIT, min(MAX_LIMIT, limit or DEFAULT_LIMIT))


def absolute_url(href: str | None, base_url: str) -> str:
    value = (href or "").strip()
    if not value:
        return ""
    try:
        return urljoin(base_url, value)
    except ValueError:
        return value


def _image_src(img: Tag | None, base_url: str) -> str:
    if img is None:
        return ""
    return absolute_url(img.get("src") or img.get("data-src"), base_url)


def _walk_fields(anchor: Tag) -> tuple[Tag | None, str, str, str]:
    container = anchor.parent
    price = location = description = ""
    depth = 0
    while isinstance(container, Tag) and depth < MAX_ANCESTOR_DEPTH:
        price = first_match(PRICE_STRATEGIES, container) or price
        location = first_match(LOCATION_STRATEGIES, container) or location
        description = first_match(DESCRIPTION_STRATEGIES, container) or description
        if price or location or description:
            break
        if not isinstance(container.parent, Tag) or container.parent.name == "[document]":
            break
        container = container.parent
        depth += 1
    return container, price, location, description


def _build_candidate(anchor: Tag, base_url: str, captured_at: datetime) -> ListingCandidate | None:
    title = normalize_text(anchor.get_text(" ", strip=True))
    url = absolute_url(anchor.get("href"), base_url)
    if not title or not url or not DETAIL_URL_RE.search(url):
        return None

    container, price, location, description = _walk_fields(anchor)
    if not price and container is not None:
        price = normalize_text(find_currency_price(normalize_text(container.get_text(" ", strip=True))))

    thumbnail = _image_src(anchor.find("img"), base_url)
    images: list[str] = []
    if container is not None:
        if not thumbnail:
            thumbnail = _image_src(container.find("img"), base_url)
        for img in container.find_all("img"):
            src = _image_src(img, base_url)
            if src and src not in images:
                images.append(src)
            if len(images) >= MAX_CONTAINER_IMAGES:
                break
    if not images and thumbnail:
        images = [thumbnail]

    return ListingCandidate(
        title=title,
        url=url,
        raw_price=price,
        raw_location=location,
        description=description,
        thumbnail_url=thumbnail,
        images=tuple(images),
        captured_at=captured_at,
    )


def extract_listings(
    html: str,
    base_url: str,
    limit: int | None = None,
    *,
    captured_at: datetime | None = None,
) -> list[ListingCandidate]:
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    cap = clamp_limit(limit)
    captured_at = captured_at or utcnow()

    found: list[ListingCandidate] = []
    for anchor in soup.select(", ".join(TITLE_ANCHOR_SELECTORS)):
        if len(found) >= cap:
            break
        try:
            candidate = _build_candidate(anchor, base_url, captured_at)
        except Exception as exc:
            logger.debug("Skipping listing anchor %s: %s", anchor.get("href"), exc)
            continue
        if candidate is not None:
            found.append(candidate)

    logger.debug("Extracted listings=%s cap=%s base=%s", len(found), cap, base_url)
    return found
