"""Print search analytics for a rolling window."""
from __future__ import annotations

import argparse
import asyncio
from typing import Any

from holiday_catalog.config.settings import Settings
from holiday_catalog.core.logging import configure_logging
from holiday_catalog.runtime import build_runtime


def _print_counts(title: str, counts: dict[str, int]) -> None:
    print(title)
    if not counts:
        print("  (none)")
        return
    for query, count in counts.items():
        print(f"  {count:6}  {query}")


async def run(settings: Settings, days: int) -> dict[str, Any]:
    async with build_runtime(settings, load_providers=False) as runtime:
        return await runtime.search.statistics(days)


def main() -> None:
    parser = argparse.ArgumentParser(description="Show search statistics and popular/zero-result queries.")
    parser.add_argument("--days", type=int, default=30, help="Window size in days (max 365).")
    args = parser.parse_args()

    settings = Settings()
    configure_logging(settings.log_level, settings.log_dir)
    settings.ensure_directories()

    report = asyncio.run(run(settings, args.days))
    stats = report["statistics"]
    print(f"Total searches:    {stats['total_searches']}")
    print(f"Unique queries:    {stats['unique_queries']}")
    print(f"Average results:   {stats['avg_results']:.2f}")
    print(f"Zero-result rate:  {stats['zero_result_rate']:.2f}%")
    _print_counts("Popular queries:", report["popular_queries"])
    _print_counts("Zero-result queries:", report["zero_result_queries"])


if __name__ == "__main__":
    main()
