import random
from typing import Iterable, Protocol, Sequence, TypeVar

from market_finder.models import FilterMethod
from market_finder.text import normalize_for_match


RANDOM_SAMPLE_SIZE = 20
TITLE_MATCH_BONUS = 10
TITLE_PRESENT_BONUS = 1


class HasTitleAndUrl(Protocol):
    title: str
    url: str


T = TypeVar("T", bound=HasTitleAndUrl)


def url_key(url: str | None) -> str:
    if not url:
        return ""
    return url.split("#", 1)[0].split("?", 1)[0].strip()


def dedupe_candidates(items: Iterable[T]) -> list[T]:
    """Keep the first item per url, falling back to title, then to position."""
    seen: dict[str, T] = {}
    for item in items:
        key = url_key(item.url)
        if not key:
            title = normalize_for_match(item.title)
            key = f"t:{title}" if title else f"f:{len(seen)}"
        seen.setdefault(key, item)
    return list(seen.values())


def dedupe_by_url(items: Iterable[T]) -> list[T]:
    """Keep the first item per exact url; items without a url are dropped."""
    seen: set[str] = set()
    out: list[T] = []
    for item in items:
        key = (item.url or "").strip()
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


def random_sample(items: Sequence[T], size: int = RANDOM_SAMPLE_SIZE, rng: random.Random | None = None) -> list[T]:
    shuffled = list(items)
    (rng or random).shuffle(shuffled)
    return shuffled[: max(0, size)]


def relevance_score(item: HasTitleAndUrl, keyword: str) -> int:
    title = normalize_for_match(item.title)
    score = 0
    if keyword and keyword in title:
        score += TITLE_MATCH_BONUS
    if title:
        score += TITLE_PRESENT_BONUS
    return score


def rank_by_relevance(items: Sequence[T], keywords: str) -> list[T]:
    keyword = normalize_for_match(keywords)
    return sorted(items, key=lambda item: relevance_score(item, keyword), reverse=True)


def filter_results(
    items: Iterable[T],
    method: FilterMethod = "dedupe",
    keywords: str = "",
    *,
    sample_size: int = RANDOM_SAMPLE_SIZE,
    rng: random.Random | None = None,
) -> list[T]:
    unique = dedupe_by_url(items)
    if method == "random":
        return random_sample(unique, sample_size, rng)
    if method == "relevance":
        return rank_by_relevance(unique, keywords)
    return unique
