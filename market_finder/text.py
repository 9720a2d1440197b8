"""Text cleanup shared by the extractor, the price parser and location matching."""

import html
import re
import unicodedata


SPACE_RE = re.compile(r"\s+")
TAG_RE = re.compile(r"<[^>]*>")
NON_MATCH_RE = re.compile(r"[^a-z0-9 ]+")

# Entity decoding can expose new tags ("&lt;b&gt;") so the cleanup runs to a fixpoint.
_MAX_PASSES = 8


def _clean_once(value: str) -> str:
    text = html.unescape(value)
    text = TAG_RE.sub(" ", text)
    text = text.replace("\xa0", " ").replace("\u202f", " ")
    return SPACE_RE.sub(" ", text).strip()


def normalize_text(value: str | None) -> str:
    if not value:
        return ""
    text = value
    for _ in range(_MAX_PASSES):
        cleaned = _clean_once(text)
        if cleaned == text:
            break
        text = cleaned
    return text


def strip_diacritics(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_for_match(value: str | None) -> str:
    """Lowercase and strip diacritics: ``"Mělník" -> "melnik"``."""
    if not value:
        return ""
    return SPACE_RE.sub(" ", strip_diacritics(normalize_text(value)).lower()).strip()


def normalize_key(value: str | None) -> str:
    """Match form reduced to ``[a-z0-9 ]``, used as a lookup key for city names."""
    text = NON_MATCH_RE.sub(" ", normalize_for_match(value))
    return SPACE_RE.sub(" ", text).strip()


def compact_digits(value: str | None) -> str:
    if not value:
        return ""
    return "".join(ch for ch in value if ch.isdigit())
