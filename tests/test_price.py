from datetime import datetime

from market_finder.price import (
    extract_price,
    find_currency_price,
    has_currency,
    is_valid_price,
    parse_price,
    repair_price,
)


def test_parse_price_threshold_boundaries() -> None:
    assert parse_price("9999") == 0
    assert parse_price("10000") == 10_000
    assert parse_price("1 500 Kč") == 1_500
    assert parse_price("2025") == 0


def test_parse_price_handles_empty_and_text() -> None:
    assert parse_price("") == 0
    assert parse_price(None) == 0
    assert parse_price("Dohodou") == 0


def test_parse_price_picks_price_out_of_surrounding_text() -> None:
    assert parse_price("Rok 2015, cena 120 000 Kč") == 120_000
    assert parse_price("150 000,- Kč") == 150_000
    assert parse_price("1.250.000 CZK") == 1_250_000


def test_parse_price_ignores_decimal_fraction() -> None:
    assert parse_price("99 990,50 Kč") == 99_990


def test_currency_match_prefers_longest_number() -> None:
    assert find_currency_price("Záloha 5 000 Kč, celkem 245 000 Kč") == "245 000 Kč"


def test_currency_match_does_not_glue_year_to_price() -> None:
    assert find_currency_price("2015 120 000 Kč") == "120 000 Kč"


def test_extract_price_uses_label_when_no_currency() -> None:
    assert extract_price("Cena: 85 000, dohoda možná") == "85 000"


def test_extract_price_bare_number_skips_units_and_years() -> None:
    assert extract_price("Octavia 2015 180 000 km 77 kW") == ""
    assert extract_price("Octavia 2015, 180 000 km, prodám za 95 000") == "95 000"


def test_extract_price_bare_number_respects_threshold() -> None:
    assert extract_price("motor 1900 ccm, výbava 555") == ""
    assert extract_price("prodám 45000", min_bare_price=50_000) == ""
    assert extract_price("prodám 45000", min_bare_price=40_000) == "45000"


def test_is_valid_price() -> None:
    assert is_valid_price("149 000 Kč")
    assert is_valid_price("500 Kč")
    assert is_valid_price("25000")
    assert not is_valid_price("2012")
    assert not is_valid_price("9500")
    assert not is_valid_price("")
    assert not is_valid_price("Dohodou")


def test_has_currency_needs_a_standalone_token() -> None:
    assert has_currency("150 000 Kč")
    assert has_currency("150000CZK")
    assert not has_currency("Kcal tabulka")


def test_repair_price_clears_year_and_small_bare_values() -> None:
    year = str(datetime.now().year)

    assert repair_price(year) == ""
    assert repair_price("850") == ""
    assert repair_price("850 Kč") == "850 Kč"
    assert repair_price("125 000") == "125 000"


def test_parse_price_rejects_mileage_and_year_text() -> None:
    assert parse_price("150 000 km") == 0
    assert parse_price("r.v. 2015, 180000 km") == 0
    assert parse_price("Cena: 150000 km") == 0
    assert parse_price("r.v. 2015, 180000 km, 95 000") == 95_000


def test_validity_and_repair_reject_mileage_and_year_text() -> None:
    assert not is_valid_price("150 000 km")
    assert not is_valid_price("r.v. 2015, 180000 km")
    assert not is_valid_price("77 kW")

    assert repair_price("150 000 km") == ""
    assert repair_price("r.v. 2015, 180000 km") == ""
    assert repair_price("Cena: 120 000") == "Cena: 120 000"
