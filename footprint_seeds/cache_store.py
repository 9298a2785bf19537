from __future__ import annotations

import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from .config import RefreshSettings
from .errors import CacheUnavailable

logger = logging.getLogger(__name__)


def _dumps(key: str, value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise CacheUnavailable(key, f"value is not JSON serializable: {e}") from e


def _loads(key: str, raw: str | bytes | None) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError as e:
        raise CacheUnavailable(key, "stored value is not valid JSON") from e


class RedisCacheStore:
    def __init__(self, url: str, client: aioredis.Redis | None = None):
        self.url = url
        self._redis = client if client is not None else aioredis.from_url(url, decode_responses=True)

    async def get_data(self, key: str) -> Any:
        try:
            raw = await self._redis.get(key)
        except RedisError as e:
            raise CacheUnavailable(key, str(e)) from e
        return _loads(key, raw)

    async def set_data(self, key: str, value: Any) -> None:
        payload = _dumps(key, value)
        try:
            await self._redis.set(key, payload)
        except RedisError as e:
            raise CacheUnavailable(key, str(e)) from e

    async def aclose(self) -> None:
        await self._redis.aclose()


class MemoryCacheStore:
    """Process-local store with the same JSON round-trip as Redis."""

    def __init__(self):
        self._store: dict[str, str] = {}

    async def get_data(self, key: str) -> Any:
        return _loads(key, self._store.get(key))

    async def set_data(self, key: str, value: Any) -> None:
        self._store[key] = _dumps(key, value)

    async def aclose(self) -> None:
        return None


def build_cache_store(settings: RefreshSettings) -> RedisCacheStore | MemoryCacheStore:
    if settings.cache_backend == "memory":
        logger.info("using in-process memory cache")
        return MemoryCacheStore()
    return RedisCacheStore(settings.redis_url)


async def load_snapshot(cache, settings: RefreshSettings) -> list[dict]:
    data = await cache.get_data(settings.emissions_key)
    if not isinstance(data, list):
        return []
    return data


async def load_last_refresh(cache, settings: RefreshSettings) -> int | None:
    value = await cache.get_data(settings.last_refresh_key)
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("ignoring unreadable refresh timestamp %r", value)
        return None
