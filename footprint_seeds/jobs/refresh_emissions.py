from __future__ import annotations

import argparse
import asyncio
import logging

from footprint_seeds.cache_store import build_cache_store
from footprint_seeds.config import RefreshSettings
from footprint_seeds.errors import CacheUnavailable
from footprint_seeds.footprint_api import FootprintClient
from footprint_seeds.refresh import EmissionsRefresher

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Refresh the cached per-country footprint ranking.")
    parser.add_argument("--force", action="store_true", help="refresh even if the cached data is fresh")
    parser.add_argument("--log-level", default="INFO", help="logging level (default: INFO)")
    return parser.parse_args(argv)


async def run(settings: RefreshSettings, force: bool = False) -> bool:
    cache = build_cache_store(settings)
    try:
        async with FootprintClient(settings) as provider:
            refresher = EmissionsRefresher(settings, provider, cache)
            if not force:
                try:
                    if not await refresher.needs_refresh():
                        return True
                except CacheUnavailable as e:
                    logger.error("cannot read last refresh time: %s", e)
                    return False
            result = await refresher.refresh()
    finally:
        await cache.aclose()

    if result.dropped is not None and result.ok:
        logger.warning("refresh finished with %d missing countries", result.dropped.count)
    return result.ok


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ok = asyncio.run(run(RefreshSettings.from_env(), force=args.force))
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
