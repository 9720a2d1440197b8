from datetime import datetime, timezone

import pytest

from market_finder.cache import InMemoryLastResults
from market_finder.models import MarketResult, PostalSuggestion, SearchCriteria
from market_finder.postal import PostalDirectory
from market_finder.search.orchestrator import MarketSearch, SearchState, parse_mileage, sort_results
from tests.conftest import FakeEnricher, FakeIndex, FakeRepository, FakeScraper, make_candidate


NOW = datetime(2026, 1, 5, tzinfo=timezone.utc)


def build_search(settings, directory, responder=None, *, enricher=None, index=None, repository=None):
    scraper = FakeScraper(responder or (lambda options: []))
    search = MarketSearch(
        scraper,
        enricher or FakeEnricher(),
        directory=directory,
        index=index,
        cache=InMemoryLastResults(),
        repository=repository,
        settings=settings,
    )
    return search, scraper


def test_empty_location_scrapes_directly(settings, directory) -> None:
    search, scraper = build_search(settings, directory, lambda options: [make_candidate(1), make_candidate(2)])

    outcome = search.run(SearchCriteria(keywords="octavia"))

    assert [r.title for r in outcome.results] == ["Škoda Octavia 1", "Škoda Octavia 2"]
    assert SearchState.DIRECT in outcome.path
    assert outcome.path[-1] == SearchState.DONE
    assert len(scraper.calls) == 1
    assert scraper.calls[0].location == ""
    assert scraper.calls[0].limit == 20


@pytest.mark.parametrize(
    ("location", "expected_term"),
    [("27724", "27724"), ("277 24", "27724"), ("277", "277")],
)
def test_postal_location_uses_exact_postal_search(settings, directory, location, expected_term) -> None:
    search, scraper = build_search(settings, directory, lambda options: [make_candidate(1)])

    outcome = search.run(SearchCriteria(keywords="octavia", location=location))

    assert SearchState.POSTAL_EXACT in outcome.path
    assert SearchState.CITY_RELAXED not in outcome.path
    assert len(scraper.calls) == 1
    assert scraper.calls[0].location == expected_term
    assert scraper.calls[0].postal_intent is True
    assert len(outcome.results) == 1


def test_city_postfilter_keeps_matching_postal_prefix(settings, directory) -> None:
    a = make_candidate(1, raw_location="Praha")
    b = make_candidate(2, raw_location="Praha")
    c = make_candidate(3, raw_location="Mělník")
    d = make_candidate(4, raw_location="Neratovice", postal_code="27711")
    enricher = FakeEnricher({a.url: "27601", b.url: "11000"})
    search, scraper = build_search(settings, directory, lambda options: [a, b, c, d], enricher=enricher)

    outcome = search.run(SearchCriteria(keywords="octavia", location="Mělník"))

    assert [r.url for r in outcome.results] == [a.url, c.url]
    assert outcome.results[0].postal == "27601"
    assert SearchState.POSTAL_POSTFILTER in outcome.path
    assert SearchState.POSTAL_EXPANSION_FALLBACK not in outcome.path
    assert scraper.calls[0].location == "Mělník"
    assert scraper.calls[0].postal_intent is False
    assert d.url not in enricher.postal_lookups


def test_city_postfilter_strict_without_matches_is_empty(settings, directory) -> None:
    items = [make_candidate(1, raw_location="Praha"), make_candidate(2, raw_location="Brno")]
    enricher = FakeEnricher({items[0].url: "11000"})
    search, _ = build_search(settings, directory, lambda options: items, enricher=enricher)

    outcome = search.run(SearchCriteria(keywords="octavia", location="Mělník", strict_location=True))

    assert outcome.results == []


def test_city_postfilter_relaxed_without_matches_keeps_originals(settings, directory) -> None:
    items = [make_candidate(1, raw_location="Praha"), make_candidate(2, raw_location="Brno")]
    enricher = FakeEnricher({items[0].url: "11000"})
    search, _ = build_search(settings, directory, lambda options: items, enricher=enricher)

    outcome = search.run(SearchCriteria(keywords="octavia", location="Mělník"))

    assert [r.url for r in outcome.results] == [item.url for item in items]


def test_empty_relaxed_scrape_expands_over_city_postal_codes(settings, directory) -> None:
    found = [make_candidate(1, raw_location="Mělník"), make_candidate(2, raw_location="Mělník")]

    def responder(options):
        return found if options.location == "27601" else []

    search, scraper = build_search(settings, directory, responder)

    outcome = search.run(SearchCriteria(keywords="octavia", location="Mělník"))

    assert [r.url for r in outcome.results] == [item.url for item in found]
    assert SearchState.POSTAL_EXPANSION_FALLBACK in outcome.path
    assert SearchState.POSTAL_POSTFILTER not in outcome.path
    assert [call.location for call in scraper.calls] == ["Mělník", "27601"]
    assert scraper.calls[1].postal_intent is True


def test_expansion_for_unknown_city_returns_empty(settings, directory) -> None:
    search, scraper = build_search(settings, directory)

    outcome = search.run(SearchCriteria(keywords="octavia", location="Atlantida"))

    assert outcome.results == []
    assert len(scraper.calls) == 1


def test_fast_index_hits_short_circuit_scraping(settings, directory) -> None:
    hits = [
        MarketResult(title=f"Car {idx}", price=100_000, location="Praha", url=f"https://x/{idx}", date=NOW)
        for idx in range(15)
    ]
    index = FakeIndex(hits)
    search, scraper = build_search(settings, directory, lambda options: [make_candidate(1)], index=index)

    outcome = search.run(SearchCriteria(keywords="octavia", location="27601"))

    assert outcome.source == "index"
    assert len(outcome.results) == 10
    assert scraper.calls == []
    assert index.queries == [("octavia", "27601")]
    assert search.cache.get() == outcome.results


def test_fast_index_error_falls_back_to_scraping(settings, directory) -> None:
    index = FakeIndex(error=RuntimeError("index down"))
    search, scraper = build_search(settings, directory, lambda options: [make_candidate(1)], index=index)

    outcome = search.run(SearchCriteria(keywords="octavia"))

    assert outcome.source == "scrape"
    assert SearchState.FAST_INDEX_SEARCH in outcome.path
    assert SearchState.SCRAPE_DISPATCH in outcome.path
    assert len(outcome.results) == 1
    assert len(scraper.calls) == 1


def test_duplicates_are_removed_before_enrichment(settings, directory) -> None:
    one = make_candidate(1)
    duplicate = make_candidate(1, title="Same listing, other title")
    enricher = FakeEnricher()
    search, _ = build_search(settings, directory, lambda options: [one, duplicate, make_candidate(2)], enricher=enricher)

    outcome = search.run(SearchCriteria(keywords="octavia"))

    assert len(enricher.enriched_batches) == 1
    assert [c.url for c in enricher.enriched_batches[0]] == [one.url, make_candidate(2).url]
    assert len(outcome.results) == 2
    assert outcome.path.index(SearchState.DEDUP) < outcome.path.index(SearchState.ENRICH)


@pytest.mark.parametrize(("requested", "expected"), [(7, 10), (None, 10), (20, 20), (50, 25)])
def test_page_size_is_clamped(settings, directory, requested, expected) -> None:
    items = [make_candidate(idx) for idx in range(25)]
    search, _ = build_search(settings, directory, lambda options: items)

    outcome = search.run(SearchCriteria(keywords="octavia", page_size=requested))

    assert len(outcome.results) == expected


def test_results_without_title_are_dropped(settings, directory) -> None:
    items = [make_candidate(1), make_candidate(2, title="")]
    search, _ = build_search(settings, directory, lambda options: items)

    outcome = search.run(SearchCriteria(keywords="octavia"))

    assert [r.title for r in outcome.results] == ["Škoda Octavia 1"]


def test_mapping_to_market_results(settings, directory) -> None:
    candidate = make_candidate(
        1,
        title="Octavia 2.0 TDI 185 000 km",
        raw_price="Cena: 89 900,- Kč",
        raw_location="",
        postal_code="27601",
        description="Servisní knížka",
    )
    search, _ = build_search(settings, directory, lambda options: [candidate])

    result = search.run(SearchCriteria(keywords="octavia")).results[0]

    assert result.price == 89_900
    assert result.location == "27601"
    assert result.postal == "27601"
    assert result.km == 185_000
    assert result.thumbnail == candidate.thumbnail_url
    assert result.images == [candidate.thumbnail_url]
    assert result.description == "Servisní knížka"
    assert result.date == candidate.captured_at


def test_distance_from_origin_postal(settings, directory) -> None:
    items = [
        make_candidate(1, raw_location="Mělník"),
        make_candidate(2, raw_location="Neratovice"),
        make_candidate(3, raw_location="Nowhere"),
    ]
    search, _ = build_search(settings, directory, lambda options: items)

    results = search.run(SearchCriteria(keywords="octavia", origin_postal="27601")).results

    assert results[0].distance == 0.0
    assert results[1].distance is not None and 5 < results[1].distance < 20
    assert results[2].distance is None


def test_scraper_exception_yields_empty_results(settings, directory) -> None:
    def responder(options):
        raise RuntimeError("boom")

    search, _ = build_search(settings, directory, responder)

    outcome = search.run(SearchCriteria(keywords="octavia"))

    assert outcome.results == []
    assert outcome.path[-1] == SearchState.DONE


def test_sort_by_price(settings, directory) -> None:
    items = [
        make_candidate(1, raw_price="300 000 Kč"),
        make_candidate(2, raw_price=""),
        make_candidate(3, raw_price="100 000 Kč"),
    ]
    search, _ = build_search(settings, directory, lambda options: items)

    ascending = search.search(SearchCriteria(keywords="octavia", sort="price"))
    descending = search.search(SearchCriteria(keywords="octavia", sort="price", order="desc"))

    assert [r.price for r in ascending] == [100_000, 300_000, 0]
    assert [r.price for r in descending] == [300_000, 100_000, 0]


def test_sort_results_without_key_keeps_order() -> None:
    results = [
        MarketResult(title="B", price=2, location="", url="b", date=NOW),
        MarketResult(title="A", price=1, location="", url="a", date=NOW),
    ]

    assert sort_results(results, None) == results


def test_persistence_tolerates_failures(settings, directory) -> None:
    items = [make_candidate(1), make_candidate(2), make_candidate(3)]
    repository = FakeRepository(fail_urls={items[1].url})
    search, _ = build_search(settings, directory, lambda options: items, repository=repository)

    outcome = search.run(SearchCriteria(keywords="octavia", save_to_db=True))
    search.close()

    assert SearchState.PERSIST in outcome.path
    assert len(outcome.results) == 3
    assert [r.url for r in repository.saved] == [items[0].url, items[2].url]


def test_persistence_skipped_unless_requested(settings, directory) -> None:
    repository = FakeRepository()
    search, _ = build_search(settings, directory, lambda options: [make_candidate(1)], repository=repository)

    outcome = search.run(SearchCriteria(keywords="octavia"))
    search.close()

    assert SearchState.PERSIST not in outcome.path
    assert repository.saved == []


def test_last_results_are_cached(settings, directory) -> None:
    search, _ = build_search(settings, directory, lambda options: [make_candidate(1)])

    results = search.search(SearchCriteria(keywords="octavia"))

    assert search.cache.get() == results


def test_parse_mileage() -> None:
    assert parse_mileage("Octavia 1.9 TDI, 210.000 km") == 210_000
    assert parse_mileage("", None, "najeto 98500 km") == 98_500
    assert parse_mileage("Octavia 2015") is None


def _big_city(count: int) -> PostalDirectory:
    return PostalDirectory([PostalSuggestion(f"{30000 + idx}", "Velké Město") for idx in range(count)])


def _one_listing_per_code(options):
    if options.location.isdigit():
        return [make_candidate(int(options.location))]
    return []


def test_expansion_scrapes_extra_codes_only_while_page_is_short(settings) -> None:
    directory = _big_city(30)
    codes = directory.codes_for_city("Velké Město")
    search, scraper = build_search(settings, directory, _one_listing_per_code)

    outcome = search.run(SearchCriteria(keywords="octavia", location="Velké Město", page_size=20))

    assert len(outcome.results) == 20
    assert scraper.calls[0].location == "Velké Město"
    assert {call.location for call in scraper.calls[1:17]} == set(codes[:16])
    assert [call.location for call in scraper.calls[17:]] == codes[16:20]


def test_expansion_skips_extra_codes_when_initial_batch_fills_page(settings) -> None:
    directory = _big_city(30)
    search, scraper = build_search(settings, directory, _one_listing_per_code)

    outcome = search.run(SearchCriteria(keywords="octavia", location="Velké Město", page_size=10))

    assert len(outcome.results) == 10
    assert len(scraper.calls) == 1 + settings.postal_initial_codes
