"""Postal code (PSČ) reference table and location classification."""

import csv
import difflib
import logging
from functools import lru_cache
from importlib import resources
from typing import Iterable

from market_finder.models import LocationKind, PostalSuggestion
from market_finder.text import compact_digits, normalize_key


logger = logging.getLogger(__name__)

PREFIX_LENGTH = 3
FULL_CODE_LENGTH = 5
NUMERIC_SUGGESTION_LIMIT = 5
CITY_SUGGESTION_LIMIT = 50
SHORT_PREFIX_LIMIT = 20
MIN_PARTIAL_KEY = 3
FUZZY_CUTOFF = 0.8


def _is_numeric(value: str) -> bool:
    compact = "".join(value.split())
    return bool(compact) and compact.isdigit()


def classify_location(raw: str | None) -> LocationKind:
    text = (raw or "").strip()
    if not text:
        return "empty"
    if _is_numeric(text):
        return "postal"
    return "city"


def normalize_postal_code(raw: str | None) -> str:
    return compact_digits(raw)


def postal_search_term(raw: str | None) -> str:
    """Full codes are used verbatim, shorter inputs shrink to the 3-digit prefix."""
    digits = normalize_postal_code(raw)
    if len(digits) >= FULL_CODE_LENGTH:
        return digits
    return digits[:PREFIX_LENGTH]


def _dedupe_by_code(entries: Iterable[PostalSuggestion]) -> list[PostalSuggestion]:
    seen: set[str] = set()
    out: list[PostalSuggestion] = []
    for entry in entries:
        if entry.code in seen:
            continue
        seen.add(entry.code)
        out.append(entry)
    return out


def _typo_variants(key: str) -> list[str]:
    variants: list[str] = []
    if key.endswith("ick"):
        variants.append(key[:-3] + "ik")
    if key.endswith("c"):
        variants.append(key[:-1])
    if len(key) > MIN_PARTIAL_KEY:
        variants.append(key[:-1])
    return [variant for idx, variant in enumerate(variants) if variant and variant not in variants[:idx]]


class PostalDirectory:
    """Immutable code/city table with prefix and city indexes."""

    def __init__(self, entries: Iterable[PostalSuggestion]) -> None:
        self._entries: tuple[PostalSuggestion, ...] = tuple(
            PostalSuggestion(code=normalize_postal_code(entry.code), city=entry.city.strip())
            for entry in entries
            if normalize_postal_code(entry.code)
        )
        by_prefix: dict[str, list[PostalSuggestion]] = {}
        by_city: dict[str, list[PostalSuggestion]] = {}
        for entry in self._entries:
            by_prefix.setdefault(entry.code[:PREFIX_LENGTH], []).append(entry)
            by_city.setdefault(normalize_key(entry.city), []).append(entry)
        self._by_prefix = {key: tuple(value) for key, value in by_prefix.items()}
        self._by_city = {key: tuple(value) for key, value in by_city.items()}

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> tuple[PostalSuggestion, ...]:
        return self._entries

    def suggest(self, query: str | None) -> list[PostalSuggestion]:
        text = (query or "").strip()
        if not text:
            return []
        if _is_numeric(text):
            return self._suggest_numeric(normalize_postal_code(text))
        return self._suggest_city(normalize_key(text))

    def _suggest_numeric(self, digits: str) -> list[PostalSuggestion]:
        matches = [entry for entry in self._entries if entry.code.startswith(digits)]
        if not matches and len(digits) >= PREFIX_LENGTH:
            matches = list(self._by_prefix.get(digits[:PREFIX_LENGTH], ()))
        ordered = sorted(_dedupe_by_code(matches), key=lambda entry: int(entry.code))
        return ordered[:NUMERIC_SUGGESTION_LIMIT]

    def _suggest_city(self, key: str) -> list[PostalSuggestion]:
        return self._resolve_city(key)[:CITY_SUGGESTION_LIMIT]

    def _resolve_city(self, key: str) -> list[PostalSuggestion]:
        """All entries matching a city key, typo tolerant and uncapped."""
        if not key:
            return []

        found = self._match_city(key)
        if not found:
            for variant in _typo_variants(key):
                found.extend(self._match_city(variant))
        if not found:
            for close in difflib.get_close_matches(key, list(self._by_city), n=5, cutoff=FUZZY_CUTOFF):
                found.extend(self._by_city[close])
        return _dedupe_by_code(found)

    def _match_city(self, key: str) -> list[PostalSuggestion]:
        exact = self._by_city.get(key)
        if exact:
            return list(exact)

        first_word = key.split(" ", 1)[0]
        if first_word != key and first_word in self._by_city:
            return list(self._by_city[first_word])

        if len(key) < MIN_PARTIAL_KEY:
            return []
        partial: list[PostalSuggestion] = []
        for city_key, entries in self._by_city.items():
            if city_key.startswith(key) or key in city_key:
                partial.extend(entries)
        return partial

    def lookup_prefixes(self, city_or_postal: str | None) -> list[str]:
        text = (city_or_postal or "").strip()
        if not text:
            return []
        if _is_numeric(text):
            digits = normalize_postal_code(text)
            if len(digits) >= PREFIX_LENGTH:
                return [digits[:PREFIX_LENGTH]]
            return sorted(prefix for prefix in self._by_prefix if prefix.startswith(digits))[:SHORT_PREFIX_LIMIT]

        prefixes: list[str] = []
        for entry in self._resolve_city(normalize_key(text)):
            prefix = entry.code[:PREFIX_LENGTH]
            if prefix not in prefixes:
                prefixes.append(prefix)
        return prefixes

    def codes_for_city(self, city: str | None) -> list[str]:
        if classify_location(city) != "city":
            return []
        return [entry.code for entry in self._resolve_city(normalize_key(city))]


def read_postal_csv(lines: Iterable[str]) -> list[PostalSuggestion]:
    reader = csv.DictReader(lines)
    return [
        PostalSuggestion(code=(row.get("code") or "").strip(), city=(row.get("city") or "").strip())
        for row in reader
        if row.get("code") and row.get("city")
    ]


@lru_cache(maxsize=1)
def load_postal_directory() -> PostalDirectory:
    source = resources.files("market_finder").joinpath("data").joinpath("psc.csv")
    with source.open("r", encoding="utf-8") as handle:
        directory = PostalDirectory(read_postal_csv(handle))
    logger.info("Loaded postal directory entries=%s", len(directory))
    return directory


def suggest_postal(query: str | None, directory: PostalDirectory | None = None) -> list[PostalSuggestion]:
    return (directory or load_postal_directory()).suggest(query)


def lookup_postal_prefixes(city_or_postal: str | None, directory: PostalDirectory | None = None) -> list[str]:
    return (directory or load_postal_directory()).lookup_prefixes(city_or_postal)
