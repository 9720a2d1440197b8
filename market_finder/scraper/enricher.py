import json
import logging
import re
from dataclasses import dataclass, field

from bs4 import BeautifulSoup, Tag

from market_finder.config import SETTINGS, Settings
from market_finder.models import ListingCandidate
from market_finder.price import extract_price, has_currency, is_valid_price, repair_price
from market_finder.scraper.batching import run_in_batches
from market_finder.scraper.client import Fetcher, HttpRequestError
from market_finder.scraper.extractor import absolute_url
from market_finder.text import compact_digits, normalize_text


logger = logging.getLogger(__name__)

LOCATION_LABEL = "Lokalita"
PRICE_LABEL = "Cena"
POSTAL_TEXT_RE = re.compile(r"^\d{3,}")
META_LOCATION_RE = re.compile(r"Lokalita:\s*([^,\n]+)", re.IGNORECASE)
LOCATION_LABEL_RE = re.compile(r"Lokalita[:\s\-]*", re.IGNORECASE)
NON_THUMBNAIL_RE = re.compile(r"icon|sprite|logo|avatar", re.IGNORECASE)

PRICE_CSS_FALLBACK = (".inzeratydetdel b", ".inzeratycena b", ".inzeratydet .cena", ".price")
LOCATION_CSS_FALLBACK = (".inzeratylok", ".locality")
DESCRIPTION_SELECTORS = (".inzeratydet .popis", ".inzerat-popis", ".popis", ".description")
META_PRICE_SELECTORS = ('meta[itemprop="price"]', 'meta[property="product:price:amount"]', 'meta[name="price"]')
MAX_PAGE_IMAGES = 12
# One attempt per detail page; the detail timeout is its whole budget.
DETAIL_FETCH_ATTEMPTS = 1


@dataclass
class DetailFields:
    price: str = ""
    price_from_row: bool = False
    location: str = ""
    location_from_row: bool = False
    postal_code: str = ""
    meta_description: str = ""
    meta_price: str = ""
    meta_location: str = ""
    css_price: str = ""
    css_location: str = ""
    description: str = ""
    og_image: str = ""
    images: list[str] = field(default_factory=list)


def _text(node: Tag | None) -> str:
    if node is None:
        return ""
    return normalize_text(node.get_text(" ", strip=True))


def _meta_content(soup: BeautifulSoup, *selectors: str) -> str:
    for selector in selectors:
        node = soup.select_one(selector)
        if node is not None and node.get("content"):
            return normalize_text(node["content"])
    return ""


def _labelled_row(soup: BeautifulSoup, label: str) -> Tag | None:
    for row in soup.select("tbody tr, table tr"):
        first_cell = row.find("td")
        if first_cell is not None and _text(first_cell).startswith(label):
            return row
    return None


def _read_location_row(soup: BeautifulSoup, fields: DetailFields) -> None:
    row = _labelled_row(soup, LOCATION_LABEL)
    if row is None:
        return
    cells = row.find_all("td")
    cell = cells[2] if len(cells) > 2 else cells[-1]
    anchors = cell.find_all("a")
    if anchors:
        postal_text = _text(anchors[0])
        if POSTAL_TEXT_RE.match(postal_text.replace(" ", "")):
            fields.postal_code = compact_digits(postal_text)
    if len(anchors) >= 2:
        fields.location = _text(anchors[1])
        fields.location_from_row = bool(fields.location)


def _read_price_row(soup: BeautifulSoup, fields: DetailFields) -> None:
    row = _labelled_row(soup, PRICE_LABEL)
    if row is None:
        return
    bold = row.find(["b", "strong"])
    fields.price = _text(bold)
    fields.price_from_row = bool(fields.price)


def _json_ld_objects(soup: BeautifulSoup) -> list[dict]:
    objects: list[dict] = []
    for script in soup.select('script[type="application/ld+json"]'):
        try:
            payload = json.loads(script.get_text() or "null")
        except ValueError:
            continue
        if isinstance(payload, list):
            payload = payload[0] if payload else None
        if isinstance(payload, dict):
            objects.append(payload)
    return objects


def _json_ld_price(obj: dict) -> str:
    offers = obj.get("offers")
    if isinstance(offers, list):
        offers = offers[0] if offers else None
    source = offers if isinstance(offers, dict) else obj
    value = source.get("price")
    if value in (None, ""):
        return ""
    currency = source.get("priceCurrency") or ""
    return normalize_text(f"{value} {currency}")


def _json_ld_image(obj: dict) -> str:
    image = obj.get("image")
    if isinstance(image, list):
        image = image[0] if image else None
    return str(image).strip() if isinstance(image, str) else ""


def extract_detail_fields(html: str, url: str) -> DetailFields:
    soup = BeautifulSoup(html or "", "html.parser")
    fields = DetailFields()

    _read_location_row(soup, fields)
    _read_price_row(soup, fields)

    fields.meta_description = _meta_content(soup, 'meta[property="og:description"]', 'meta[name="description"]')
    location_match = META_LOCATION_RE.search(fields.meta_description)
    if location_match:
        fields.meta_location = normalize_text(location_match.group(1))

    fields.meta_price = _meta_content(soup, *META_PRICE_SELECTORS)
    og_image = _meta_content(soup, 'meta[property="og:image"]', 'meta[name="og:image"]')

    for obj in _json_ld_objects(soup):
        if not fields.meta_price:
            fields.meta_price = _json_ld_price(obj)
        if not og_image:
            og_image = _json_ld_image(obj)
    fields.og_image = absolute_url(og_image, url)

    for selector in PRICE_CSS_FALLBACK:
        fields.css_price = _text(soup.select_one(selector))
        if fields.css_price:
            break
    for selector in LOCATION_CSS_FALLBACK:
        fields.css_location = normalize_text(LOCATION_LABEL_RE.sub("", _text(soup.select_one(selector))))
        if fields.css_location:
            break
    for selector in DESCRIPTION_SELECTORS:
        fields.description = _text(soup.select_one(selector))
        if fields.description:
            break

    for img in soup.find_all("img"):
        src = (img.get("src") or img.get("data-src") or "").strip()
        if not src or src.startswith("data:"):
            continue
        resolved = absolute_url(src, url)
        if resolved not in fields.images:
            fields.images.append(resolved)
        if len(fields.images) >= MAX_PAGE_IMAGES:
            break

    return fields


def merge_detail_fields(
    candidate: ListingCandidate,
    fields: DetailFields,
    *,
    min_bare_price: int,
) -> ListingCandidate:
    """Fold detail page fields into ``candidate``.

    Labelled table rows are authoritative and replace listing-page values. Meta
    tags and CSS fallbacks only fill what is still missing or invalid.
    """
    price = candidate.raw_price
    if fields.price_from_row:
        price = fields.price
    if not is_valid_price(price, min_bare_price=min_bare_price):
        for fallback in (
            extract_price(fields.meta_description, min_bare_price=min_bare_price)
            if has_currency(fields.meta_description)
            else "",
            fields.meta_price,
            fields.css_price,
        ):
            if fallback:
                price = fallback
                break

    location = candidate.raw_location
    if fields.location_from_row:
        location = fields.location
    if not location:
        location = fields.meta_location or fields.css_location

    thumbnail = fields.og_image or candidate.thumbnail_url
    if not thumbnail:
        usable = [src for src in fields.images if not NON_THUMBNAIL_RE.search(src)]
        thumbnail = (usable or fields.images or [""])[0]

    images = list(candidate.images)
    for src in fields.images:
        if src not in images:
            images.append(src)

    return candidate.with_fields(
        raw_price=repair_price(price, min_bare_price=min_bare_price),
        raw_location=location,
        postal_code=fields.postal_code or candidate.postal_code,
        thumbnail_url=thumbnail,
        description=candidate.description or fields.description or fields.meta_description,
        images=tuple(images),
    )


class DetailEnricher:
    def __init__(self, fetcher: Fetcher, settings: Settings = SETTINGS) -> None:
        self._fetcher = fetcher
        self._settings = settings

    def is_complete(self, candidate: ListingCandidate) -> bool:
        return (
            is_valid_price(candidate.raw_price, min_bare_price=self._settings.min_bare_price)
            and bool(candidate.raw_location.strip())
            and bool(candidate.thumbnail_url.strip())
        )

    def _fetch_detail(self, url: str) -> str | None:
        try:
            result = self._fetcher.fetch(
                url,
                timeout=self._settings.detail_timeout_seconds,
                attempts=DETAIL_FETCH_ATTEMPTS,
            )
        except HttpRequestError as exc:
            logger.warning("Detail fetch failed for %s: %s", url, exc)
            return None
        return result.body or None

    def enrich(self, candidate: ListingCandidate) -> ListingCandidate:
        if self.is_complete(candidate):
            return candidate
        html = self._fetch_detail(candidate.url)
        if html is None:
            return candidate
        fields = extract_detail_fields(html, candidate.url)
        return merge_detail_fields(candidate, fields, min_bare_price=self._settings.min_bare_price)

    def enrich_many(self, candidates: list[ListingCandidate]) -> list[ListingCandidate]:
        pending = [idx for idx, candidate in enumerate(candidates) if not self.is_complete(candidate)]
        if not pending:
            return list(candidates)

        outcomes = run_in_batches(
            [candidates[idx] for idx in pending],
            self.enrich,
            concurrency=self._settings.detail_concurrency,
            batch_pause=self._settings.batch_pause_seconds,
        )
        enriched = list(candidates)
        failed = 0
        for idx, outcome in zip(pending, outcomes):
            if isinstance(outcome, BaseException):
                failed += 1
                logger.warning("Enrichment failed for %s: %s", candidates[idx].url, outcome)
                continue
            enriched[idx] = outcome

        logger.info("Enrichment summary: total=%s fetched=%s failed=%s", len(candidates), len(pending), failed)
        return enriched

    def lookup_postal(self, url: str) -> str:
        """Authoritative postal code from a listing's detail page, ``""`` when unknown."""
        html = self._fetch_detail(url)
        if html is None:
            return ""
        try:
            return extract_detail_fields(html, url).postal_code
        except Exception as exc:
            logger.debug("Postal lookup parse failed for %s: %s", url, exc)
            return ""
