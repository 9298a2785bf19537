from __future__ import annotations

import asyncio

from footprint_seeds.cache_store import MemoryCacheStore
from footprint_seeds.config import RefreshSettings
from footprint_seeds.errors import CacheUnavailable, NothingToRefresh, PartialFetchFailure, ProviderUnavailable
from footprint_seeds.models import CountryDescriptor
from footprint_seeds.refresh import EmissionsRefresher, select_countries

SETTINGS = RefreshSettings(
    skipped_countries=frozenset({"World", " eu-27 "}),
    refresh_duration_ms=1_000,
    cache_backend="memory",
)


def _record(code: str, name: str, year: int, value: float) -> dict:
    return {"countryCode": code, "countryName": name, "isoa2": name[:2].upper(), "year": year, "carbon": value / 2, "value": value}


class _DummyProvider:
    def __init__(self, countries, records, fail_list=False):
        self.countries = countries
        self.records = records
        self.fail_list = fail_list
        self.requested: list[str] = []

    async def get_countries(self):
        if self.fail_list:
            raise ProviderUnavailable("/countries", "HTTP 503")
        return [CountryDescriptor(code, name) for code, name in self.countries]

    async def fetch_country_footprint(self, country_code):
        self.requested.append(country_code)
        await asyncio.sleep(0)
        data = self.records.get(country_code)
        if isinstance(data, Exception):
            raise data
        if data is None:
            raise ProviderUnavailable(f"/data/{country_code}", "HTTP 404")
        return data


class _RecordingCache(MemoryCacheStore):
    def __init__(self, fail_keys=()):
        super().__init__()
        self.fail_keys = set(fail_keys)
        self.writes: list[str] = []

    async def set_data(self, key, value):
        if key in self.fail_keys:
            raise CacheUnavailable(key, "connection refused")
        self.writes.append(key)
        await super().set_data(key, value)


def _clock(start: int = 1_000_000):
    ticks = iter(range(start, start + 1000))
    return lambda: next(ticks)


def _refresher(provider, cache=None, clock=None):
    return EmissionsRefresher(SETTINGS, provider, cache or _RecordingCache(), clock=clock or _clock())


COUNTRIES = [("1", "Armenia"), ("2", "Brazil"), ("5001", "World"), ("3", "Chad"), ("4", " brazil "), ("6", "EU-27")]
RECORDS = {
    "1": [_record("1", "Armenia", 2018, 5.0), _record("1", "Armenia", 2019, 6.0)],
    "2": [_record("2", "Brazil", 2019, 80.0)],
    "3": [_record("3", "Chad", 2019, 20.0)],
    "4": [_record("4", "Brazil", 2019, 1.0)],
    "5001": [_record("5001", "World", 2019, 9999.0)],
    "6": [_record("6", "EU-27", 2019, 500.0)],
}


def test_select_countries_skips_and_keeps_first_duplicate() -> None:
    countries = [CountryDescriptor(code, name) for code, name in COUNTRIES]

    selected = select_countries(countries, SETTINGS.skipped_countries)

    assert list(selected) == ["armenia", "brazil", "chad"]
    assert selected["brazil"].country_code == "2"


def test_prepare_ranks_and_caches_snapshot() -> None:
    provider = _DummyProvider(COUNTRIES, RECORDS)
    cache = _RecordingCache()
    refresher = _refresher(provider, cache)

    result = asyncio.run(refresher.prepare())

    assert result.ok
    assert sorted(provider.requested) == ["1", "2", "3"]
    assert [e["country"] for e in result.entries] == ["Brazil", "Chad", "Armenia"]
    assert [e["rank"] for e in result.entries] == [1, 2, 3]
    totals = [e["total"] for e in result.entries]
    assert all(a >= b for a, b in zip(totals, totals[1:]))
    assert result.entries[2]["year"] == 2019
    assert cache.writes == [SETTINGS.emissions_key, SETTINGS.last_refresh_key]


def test_prepare_round_trips_through_cache() -> None:
    cache = _RecordingCache()
    refresher = _refresher(_DummyProvider(COUNTRIES, RECORDS), cache, clock=_clock(5_000))

    async def scenario():
        result = await refresher.prepare()
        return result, await cache.get_data(SETTINGS.emissions_key), await cache.get_data(SETTINGS.last_refresh_key)

    result, snapshot, stamp = asyncio.run(scenario())

    assert snapshot == result.entries
    assert stamp == result.refreshed_at
    assert stamp >= 5_000


def test_prepare_drops_failed_countries_and_reports_count() -> None:
    records = dict(RECORDS)
    records["3"] = RuntimeError("connection reset")
    provider = _DummyProvider(COUNTRIES, records)

    result = asyncio.run(_refresher(provider).prepare())

    assert result.ok
    assert [e["country"] for e in result.entries] == ["Brazil", "Armenia"]
    assert isinstance(result.dropped, PartialFetchFailure)
    assert result.dropped.count == 1
    assert result.dropped.requested == 3
    assert result.dropped.countries == ["chad"]


def test_prepare_all_fetches_failing_leaves_cache_untouched() -> None:
    provider = _DummyProvider(COUNTRIES, {})
    cache = _RecordingCache()

    result = asyncio.run(_refresher(provider, cache).prepare())

    assert result.entries == []
    assert isinstance(result.error, PartialFetchFailure)
    assert result.error.total
    assert not result.written
    assert cache.writes == []


def test_prepare_country_list_failure_writes_nothing() -> None:
    provider = _DummyProvider(COUNTRIES, RECORDS, fail_list=True)
    cache = _RecordingCache()

    result = asyncio.run(_refresher(provider, cache).prepare())

    assert isinstance(result.error, ProviderUnavailable)
    assert provider.requested == []
    assert cache.writes == []


def test_prepare_snapshot_write_failure_skips_timestamp() -> None:
    cache = _RecordingCache(fail_keys={SETTINGS.emissions_key})

    result = asyncio.run(_refresher(_DummyProvider(COUNTRIES, RECORDS), cache).prepare())

    assert isinstance(result.error, CacheUnavailable)
    assert cache.writes == []
    assert asyncio.run(cache.get_data(SETTINGS.last_refresh_key)) is None


def test_prepare_keys_by_requested_country_when_provider_echoes_other_name() -> None:
    records = {"1": [_record("1", "Republic of Armenia", 2019, 6.0)]}
    provider = _DummyProvider([("1", "Armenia")], records)

    result = asyncio.run(_refresher(provider).prepare())

    assert len(result.entries) == 1
    assert result.entries[0]["country_code"] == "1"


def test_prepare_counts_countries_without_usable_records() -> None:
    records = dict(RECORDS)
    records["3"] = [{"countryCode": "3", "countryName": "Chad", "year": None, "value": 20.0}]
    records["1"] = [{"countryCode": "1", "countryName": "Armenia", "year": float("inf"), "value": 6.0}]
    cache = _RecordingCache()

    result = asyncio.run(_refresher(_DummyProvider(COUNTRIES, records), cache).prepare())

    assert result.ok
    assert [e["country"] for e in result.entries] == ["Brazil"]
    assert result.dropped.count == 2
    assert sorted(result.dropped.countries) == ["armenia", "chad"]
    assert cache.writes == [SETTINGS.emissions_key, SETTINGS.last_refresh_key]


def test_prepare_keeps_previous_snapshot_when_no_records_are_usable() -> None:
    records = {code: [{"countryCode": code, "countryName": "x", "value": 1.0}] for code in RECORDS}
    cache = _RecordingCache()
    previous = [{"rank": 1, "country": "Old", "total": 3.0}]
    asyncio.run(cache.set_data(SETTINGS.emissions_key, previous))
    cache.writes.clear()

    result = asyncio.run(_refresher(_DummyProvider(COUNTRIES, records), cache).prepare())

    assert not result.ok
    assert isinstance(result.error, PartialFetchFailure)
    assert result.error.total
    assert result.entries == []
    assert cache.writes == []
    assert asyncio.run(cache.get_data(SETTINGS.emissions_key)) == previous


def test_prepare_with_only_skipped_countries_writes_nothing() -> None:
    provider = _DummyProvider([("5001", "World"), ("6", "EU-27")], RECORDS)
    cache = _RecordingCache()

    result = asyncio.run(_refresher(provider, cache).prepare())

    assert isinstance(result.error, NothingToRefresh)
    assert result.error.listed == 2
    assert provider.requested == []
    assert cache.writes == []


def test_prepare_transform_error_is_returned_not_raised(monkeypatch) -> None:
    def _boom(_):
        raise ValueError("bad data")

    monkeypatch.setattr("footprint_seeds.refresh.transform_data", _boom)
    cache = _RecordingCache()

    result = asyncio.run(_refresher(_DummyProvider(COUNTRIES, RECORDS), cache).prepare())

    assert isinstance(result.error, ValueError)
    assert cache.writes == []


def _check(last_refresh, now):
    cache = MemoryCacheStore()
    refresher = EmissionsRefresher(SETTINGS, _DummyProvider([], {}), cache, clock=lambda: now)
    calls = []

    async def _fake_prepare():
        calls.append(now)
        return None

    refresher.prepare = _fake_prepare

    async def scenario():
        if last_refresh is not None:
            await cache.set_data(SETTINGS.last_refresh_key, last_refresh)
        task = await refresher.should_fetch_on_restart()
        if task is not None:
            await task
        return task

    task = asyncio.run(scenario())
    return task, calls


def test_should_fetch_on_restart_without_timestamp() -> None:
    task, calls = _check(None, 50_000)
    assert task is not None
    assert len(calls) == 1


def test_should_fetch_on_restart_after_duration() -> None:
    t, d = 10_000, SETTINGS.refresh_duration_ms

    task, calls = _check(t, t + d + 1)
    assert task is not None
    assert len(calls) == 1

    task, calls = _check(t, t + d - 1)
    assert task is None
    assert calls == []


def test_should_fetch_on_restart_ignores_unavailable_cache() -> None:
    class _DownCache:
        async def get_data(self, key):
            raise CacheUnavailable(key, "timeout")

    refresher = EmissionsRefresher(SETTINGS, _DummyProvider([], {}), _DownCache())

    assert asyncio.run(refresher.should_fetch_on_restart()) is None


def test_refresh_is_single_flight() -> None:
    provider = _DummyProvider(COUNTRIES, RECORDS)
    refresher = _refresher(provider)

    async def scenario():
        first = refresher.refresh()
        second = refresher.refresh()
        await first
        third = refresher.refresh()
        await third
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert first is second
    assert third is not first
    assert sorted(provider.requested) == ["1", "1", "2", "2", "3", "3"]
