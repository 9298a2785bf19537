from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from .cache_store import load_last_refresh
from .config import RefreshSettings, normalize_country_name
from .emissions import sort_by_highest_total, transform_data
from .errors import CacheUnavailable, NothingToRefresh, PartialFetchFailure, RefreshError
from .models import CountryDescriptor, RefreshResult

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


def select_countries(countries: list[CountryDescriptor], skipped: frozenset[str]) -> dict[str, CountryDescriptor]:
    """Map normalized name -> descriptor, dropping skipped names; the first duplicate wins."""
    selected: dict[str, CountryDescriptor] = {}
    for country in countries:
        key = country.normalized_name
        if not key or key in skipped or key in selected:
            continue
        selected[key] = country
    return selected


class EmissionsRefresher:
    """Fetches, ranks and caches per-country footprint data.

    ``provider`` needs ``get_countries()`` and ``fetch_country_footprint(code)``;
    ``cache`` needs ``get_data(key)`` and ``set_data(key, value)``. All four are
    coroutines.
    """

    def __init__(
        self,
        settings: RefreshSettings,
        provider,
        cache,
        clock: Callable[[], int] = now_ms,
    ):
        self.settings = settings
        self.provider = provider
        self.cache = cache
        self.clock = clock
        self._inflight: asyncio.Task | None = None

    async def _fetch_all(self, selected: dict[str, CountryDescriptor]) -> tuple[dict[str, list[dict]], list[str]]:
        keys = list(selected)
        results = await asyncio.gather(
            *(self.provider.fetch_country_footprint(selected[k].country_code) for k in keys),
            return_exceptions=True,
        )

        data_by_country: dict[str, list[dict]] = {}
        failed: list[str] = []
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.debug("fetch for %s failed: %s", key, result)
                failed.append(key)
                continue
            if not result:
                failed.append(key)
                continue
            echoed = normalize_country_name(result[0].get("countryName")) if isinstance(result[0], dict) else ""
            if echoed and echoed != key:
                logger.warning("provider answered %r for requested country %r; keeping %r", echoed, key, key)
            data_by_country[key] = result
        return data_by_country, failed

    async def prepare(self) -> RefreshResult:
        started = self.clock()
        result = RefreshResult()
        try:
            countries = await self.provider.get_countries()
            selected = select_countries(countries, self.settings.skipped_countries)
            if not selected:
                raise NothingToRefresh(len(countries))
            result.requested = len(selected)
            logger.info("refreshing emissions for %d of %d listed countries", len(selected), len(countries))

            data_by_country, failed = await self._fetch_all(selected)
            if failed:
                logger.warning("fetch failed for %d countries: %s", len(failed), ", ".join(failed))

            entries, unusable = transform_data(data_by_country)
            if unusable:
                logger.warning("no usable records for %d countries: %s", len(unusable), ", ".join(unusable))

            dropped = failed + unusable
            if dropped:
                result.dropped = PartialFetchFailure(len(dropped), len(selected), dropped)
                if result.dropped.total:
                    raise result.dropped

            entries = sort_by_highest_total(entries)

            await self.cache.set_data(self.settings.emissions_key, entries)
            refreshed_at = self.clock()
            await self.cache.set_data(self.settings.last_refresh_key, refreshed_at)

            result.entries = entries
            result.refreshed_at = refreshed_at
            logger.info("cached %d ranked countries in %d ms", len(entries), refreshed_at - started)
        except RefreshError as e:
            logger.error("emissions refresh aborted: %s", e)
            result.error = e
        except Exception as e:
            logger.exception("emissions refresh failed")
            result.error = e
        return result

    def refresh(self) -> asyncio.Task:
        """Start a run in the background, or return the one already in flight."""
        if self._inflight is not None and not self._inflight.done():
            logger.info("emissions refresh already running; joining it")
            return self._inflight
        task = asyncio.get_running_loop().create_task(self.prepare())
        self._inflight = task
        return task

    async def needs_refresh(self) -> bool:
        """True when the cached data is missing or stale. Raises CacheUnavailable."""
        last = await load_last_refresh(self.cache, self.settings)
        now = self.clock()
        if last is not None and now - last <= self.settings.refresh_duration_ms:
            logger.info("emissions data is fresh (age %d ms); skipping refresh", now - last)
            return False
        return True

    async def should_fetch_on_restart(self) -> asyncio.Task | None:
        try:
            stale = await self.needs_refresh()
        except CacheUnavailable as e:
            logger.error("cannot read last refresh time: %s", e)
            return None
        if not stale:
            return None
        logger.info("emissions data is missing or stale; starting refresh")
        return self.refresh()
