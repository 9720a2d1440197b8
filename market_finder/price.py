import re
from datetime import datetime
from typing import Iterator

from market_finder.text import normalize_text, strip_diacritics


MIN_BARE_PRICE = 10_000
MIN_PLAUSIBLE_YEAR = 1900

CURRENCY_RE = re.compile(r"(?<![^\W\d_])(?:k[čc]|czk)(?![^\W\d_])", re.IGNORECASE)
CURRENCY_PRICE_RE = re.compile(
    r"(?<!\d)(?:\d{1,3}(?:[ \u00a0.,]\d{3})+|\d+)(?:[.,]\d{1,2}(?!\d))?(?:,-|\.-)?\s*(?:Kč|Kc|CZK)",
    re.IGNORECASE,
)
PRICE_LABEL_RE = re.compile(r"cena[:\s\-–—]*([^,\n]+)", re.IGNORECASE)
BARE_NUMBER_RE = re.compile(r"(?<![\d.,])(\d{1,3}(?:[ \u00a0.,]\d{3})+|\d{3,})(?![\d])(?:\s*([^\W\d_]+))?")
DECIMAL_TAIL_RE = re.compile(r"[.,]\d{1,2}(?!\d)")
NON_DIGIT_RE = re.compile(r"\D")

# Quantities that commonly sit next to a bare number in car ads.
NON_PRICE_UNITS = frozenset(
    {
        "kw",
        "hp",
        "ps",
        "km",
        "tkm",
        "ccm",
        "cc",
        "cm",
        "l",
        "nm",
        "kg",
        "rv",
        "rok",
        "roku",
        "let",
        "ks",
    }
)


def _current_year() -> int:
    return datetime.now().year


def _digits_value(text: str) -> int:
    digits = NON_DIGIT_RE.sub("", DECIMAL_TAIL_RE.sub("", text))
    return int(digits) if digits else 0


def _digit_count(text: str) -> int:
    return len(NON_DIGIT_RE.sub("", text))


def has_currency(text: str | None) -> bool:
    return bool(text) and CURRENCY_RE.search(text) is not None


def looks_like_year(value: int) -> bool:
    return MIN_PLAUSIBLE_YEAR <= value <= _current_year() + 1


def find_currency_price(text: str) -> str:
    best = ""
    for match in CURRENCY_PRICE_RE.finditer(text):
        found = match.group(0)
        if _digit_count(found) > _digit_count(best):
            best = found
    return best


def _unit_free_numbers(text: str) -> Iterator[str]:
    for match in BARE_NUMBER_RE.finditer(text):
        number, unit = match.group(1), match.group(2)
        if unit and strip_diacritics(unit).lower() in NON_PRICE_UNITS:
            continue
        yield number


def _find_labelled_price(text: str) -> str:
    for match in PRICE_LABEL_RE.finditer(text):
        value = match.group(1)
        found = find_currency_price(value)
        if found:
            return found
        number = next(_unit_free_numbers(value), "")
        if number:
            return number
    return ""


def _find_bare_price(text: str, min_bare_price: int) -> str:
    for number in _unit_free_numbers(text):
        value = _digits_value(number)
        if _digit_count(number) == 4 and looks_like_year(value):
            continue
        if value >= min_bare_price:
            return number
    return ""


def extract_price(raw_text: str | None, *, min_bare_price: int = MIN_BARE_PRICE) -> str:
    """Best-effort price fragment from free text.

    Currency-tagged numbers win (longest digit run first), then the value after a
    "Cena:" label, then the first bare number that is neither a year nor followed
    by a non-price unit and reaches ``min_bare_price``. Returns ``""`` when nothing
    qualifies.
    """
    text = normalize_text(raw_text)
    if not text:
        return ""

    found = find_currency_price(text)
    if found:
        return normalize_text(found)

    found = _find_labelled_price(text)
    if found:
        return normalize_text(found)

    return normalize_text(_find_bare_price(text, min_bare_price))


def _price_value(text: str, min_bare_price: int) -> int:
    # Only the extracted fragment counts; digits elsewhere in the text are never glued on.
    fragment = extract_price(text, min_bare_price=min_bare_price)
    if not fragment:
        return 0
    value = _digits_value(fragment)
    if has_currency(fragment):
        return value
    if _digit_count(fragment) == 4 and looks_like_year(value):
        return 0
    return value if value >= min_bare_price else 0


def is_valid_price(price_text: str | None, *, min_bare_price: int = MIN_BARE_PRICE) -> bool:
    return _price_value(normalize_text(price_text), min_bare_price) > 0


def parse_price(raw_price_text: str | None, *, min_bare_price: int = MIN_BARE_PRICE) -> int:
    """Numeric price, 0 when the text is not confidently a price."""
    return _price_value(normalize_text(raw_price_text), min_bare_price)


def repair_price(price_text: str | None, *, min_bare_price: int = MIN_BARE_PRICE) -> str:
    """Clear years, mileage and too small bare values instead of keeping a misleading price."""
    text = normalize_text(price_text)
    if not text or is_valid_price(text, min_bare_price=min_bare_price):
        return text
    return ""
