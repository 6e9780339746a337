"""Run a property search (or suggestion lookup) from the command line and print JSON."""
from __future__ import annotations

import argparse
import asyncio
import json
from typing import Any

from pydantic import ValidationError

from holiday_catalog.config.settings import Settings
from holiday_catalog.core.logging import configure_logging
from holiday_catalog.runtime import build_runtime
from holiday_catalog.search.request import SearchRequest


def _params(args: argparse.Namespace) -> dict[str, Any]:
    params: dict[str, Any] = {
        "q": args.query,
        "location": args.location,
        "type": args.type,
        "sleeps": args.sleeps,
        "bedrooms": args.bedrooms,
        "bathrooms": args.bathrooms,
        "price_min": args.price_min,
        "price_max": args.price_max,
        "sort": args.sort,
        "per_page": args.per_page,
        "page": args.page,
        "facets": args.facets,
        "include_inactive": args.include_inactive,
        "featured": args.featured,
    }
    return {key: value for key, value in params.items() if value not in (None, [])}


async def run(settings: Settings, args: argparse.Namespace) -> dict[str, Any]:
    async with build_runtime(settings, load_providers=False) as runtime:
        if args.suggest:
            return await runtime.search.suggest(args.query or "", args.per_page or 10)
        request = SearchRequest.from_params(_params(args))
        return await runtime.search.search(request, user_id=args.user_id)


def main() -> None:
    parser = argparse.ArgumentParser(description="Search the property catalog.")
    parser.add_argument("query", nargs="?", default=None, help="Free-text query.")
    parser.add_argument("--location", type=int, action="append", help="Location id (repeatable).")
    parser.add_argument("--type", action="append", help="Property type (repeatable).")
    parser.add_argument("--sleeps", type=int, help="Minimum guests.")
    parser.add_argument("--bedrooms", type=int, help="Minimum bedrooms.")
    parser.add_argument("--bathrooms", type=int, help="Minimum bathrooms.")
    parser.add_argument("--price-min", type=float)
    parser.add_argument("--price-max", type=float)
    parser.add_argument("--sort", choices=["relevance", "price_asc", "price_desc", "sleeps_desc", "featured"])
    parser.add_argument("--per-page", type=int, default=None)
    parser.add_argument("--page", type=int, default=None)
    parser.add_argument("--facets", action="store_true", help="Include facet counts.")
    parser.add_argument("--include-inactive", action="store_true")
    parser.add_argument("--featured", action="store_true", help="Only featured properties.")
    parser.add_argument("--user-id", type=int, default=None, help="Actor id recorded in the search log.")
    parser.add_argument("--suggest", action="store_true", help="Return name suggestions for the query instead.")
    args = parser.parse_args()

    settings = Settings()
    configure_logging(settings.log_level, settings.log_dir)
    settings.ensure_directories()

    try:
        response = asyncio.run(run(settings, args))
    except ValidationError as exc:
        parser.error(str(exc))
    print(json.dumps(response, indent=2, default=str))


if __name__ == "__main__":
    main()
