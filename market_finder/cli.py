import argparse
import json
import logging
import sys

from market_finder.config import SETTINGS
from market_finder.filters import filter_results
from market_finder.models import SearchCriteria
from market_finder.postal import suggest_postal
from market_finder.search.orchestrator import build_market_search


logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="market-finder", description="Search used-car listings on bazos.cz")
    subparsers = parser.add_subparsers(dest="command", required=True)

    search = subparsers.add_parser("search", help="run a listing search")
    search.add_argument("keywords", nargs="?", default="")
    search.add_argument("--location", "-l", default="")
    search.add_argument("--strict", action="store_true", help="never relax the location filter")
    search.add_argument("--page-size", type=int, default=None)
    search.add_argument("--filter", dest="filter_method", choices=("dedupe", "random", "relevance"), default="dedupe")
    search.add_argument("--sort", choices=("date", "price", "km", "distance"), default=None)
    search.add_argument("--order", choices=("asc", "desc"), default="asc")
    search.add_argument("--save", action="store_true", help="persist results when a database is configured")

    postal = subparsers.add_parser("postal", help="suggest postal codes for a city or prefix")
    postal.add_argument("query")

    return parser


def _run_search(args: argparse.Namespace) -> int:
    market = build_market_search(SETTINGS)
    try:
        results = market.search(
            SearchCriteria(
                keywords=args.keywords,
                location=args.location,
                strict_location=args.strict,
                page_size=args.page_size,
                save_to_db=args.save,
                sort=args.sort,
                order=args.order,
            )
        )
    finally:
        market.close()

    results = filter_results(results, args.filter_method, args.keywords, sample_size=SETTINGS.random_sample_size)
    json.dump([result.to_dict() for result in results], sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")
    return 0


def _run_postal(args: argparse.Namespace) -> int:
    suggestions = suggest_postal(args.query)
    payload = [{"code": item.code, "city": item.city} for item in suggestions]
    json.dump(payload, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")
    return 0


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=SETTINGS.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    args = _build_parser().parse_args(argv)
    if args.command == "search":
        return _run_search(args)
    return _run_postal(args)


if __name__ == "__main__":
    raise SystemExit(main())
