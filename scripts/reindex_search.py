"""Rebuild the configured search index from the property tables."""
from __future__ import annotations

import argparse
import asyncio
import logging

from holiday_catalog.config.settings import Settings
from holiday_catalog.core.logging import configure_logging
from holiday_catalog.runtime import build_runtime


async def run(settings: Settings, *, clear: bool) -> int:
    async with build_runtime(settings, load_providers=False) as runtime:
        if clear:
            await runtime.index.clear_index()
        return await runtime.index.reindex_all()


def main() -> None:
    parser = argparse.ArgumentParser(description="Rebuild the property search index.")
    parser.add_argument("--clear", action="store_true", help="Empty the index before re-importing.")
    args = parser.parse_args()

    settings = Settings()
    configure_logging(settings.log_level, settings.log_dir)
    settings.ensure_directories()

    indexed = asyncio.run(run(settings, clear=args.clear))
    logging.getLogger(__name__).info("Indexed %s properties (backend=%s)", indexed, settings.search_backend)
    print(f"Indexed {indexed} properties")


if __name__ == "__main__":
    main()
