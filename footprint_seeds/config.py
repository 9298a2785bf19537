from __future__ import annotations

import os
from dataclasses import dataclass, field

FOOTPRINT_API_URL = "https://api.footprintnetwork.org/v1"
FOOTPRINT_RECORD_TYPE = "EFCtot"
REQUEST_TIMEOUT_SECONDS = 30.0
FETCH_CONCURRENCY = 20

# Aggregates and historical entities the provider lists alongside countries.
SKIPPED_COUNTRIES = (
    "world",
    "africa",
    "asia",
    "europe",
    "north america",
    "latin america",
    "oceania",
    "central america",
    "caribbean",
    "middle east/central asia",
    "eu-27",
    "ussr",
    "yugoslav sfr",
    "czechoslovakia",
    "ethiopia pdr",
    "sudan (former)",
    "serbia and montenegro",
    "belgium-luxembourg",
)

EMISSIONS_CACHE_KEY = "emissions_by_country"
LAST_REFRESH_CACHE_KEY = "emissions_last_refresh"

REDIS_URL = "redis://localhost:6379/0"
CACHE_BACKEND = "redis"

REFRESH_DURATION_MS = 1000 * 60 * 60 * 24 * 7


def normalize_country_name(name: str | None) -> str:
    return (name or "").strip().lower()


def _split_names(text: str) -> tuple[str, ...]:
    return tuple(n for n in (normalize_country_name(x) for x in text.split(",")) if n)


@dataclass(frozen=True)
class RefreshSettings:
    api_url: str = FOOTPRINT_API_URL
    api_key: str | None = None
    record_type: str = FOOTPRINT_RECORD_TYPE
    request_timeout: float = REQUEST_TIMEOUT_SECONDS
    max_concurrency: int | None = FETCH_CONCURRENCY
    skipped_countries: frozenset[str] = field(default_factory=lambda: frozenset(SKIPPED_COUNTRIES))
    emissions_key: str = EMISSIONS_CACHE_KEY
    last_refresh_key: str = LAST_REFRESH_CACHE_KEY
    refresh_duration_ms: int = REFRESH_DURATION_MS
    redis_url: str = REDIS_URL
    cache_backend: str = CACHE_BACKEND

    def __post_init__(self) -> None:
        # Callers may pass raw names; keying always uses the normalized form.
        object.__setattr__(
            self,
            "skipped_countries",
            frozenset(normalize_country_name(n) for n in self.skipped_countries),
        )
        if self.refresh_duration_ms < 0:
            raise ValueError("refresh_duration_ms must be >= 0")
        if self.cache_backend not in {"redis", "memory"}:
            raise ValueError(f"unknown cache backend: {self.cache_backend!r}")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> RefreshSettings:
        env = os.environ if environ is None else environ
        kwargs: dict = {}
        if env.get("FOOTPRINT_API_URL"):
            kwargs["api_url"] = env["FOOTPRINT_API_URL"].rstrip("/")
        if env.get("FOOTPRINT_API_KEY"):
            kwargs["api_key"] = env["FOOTPRINT_API_KEY"]
        if env.get("FOOTPRINT_RECORD_TYPE"):
            kwargs["record_type"] = env["FOOTPRINT_RECORD_TYPE"]
        if env.get("SKIPPED_COUNTRIES"):
            kwargs["skipped_countries"] = frozenset(_split_names(env["SKIPPED_COUNTRIES"]))
        if env.get("REFRESH_DURATION_MS"):
            kwargs["refresh_duration_ms"] = int(env["REFRESH_DURATION_MS"])
        if env.get("FETCH_CONCURRENCY"):
            limit = int(env["FETCH_CONCURRENCY"])
            kwargs["max_concurrency"] = limit if limit > 0 else None
        if env.get("REDIS_URL"):
            kwargs["redis_url"] = env["REDIS_URL"]
        if env.get("CACHE_BACKEND"):
            kwargs["cache_backend"] = env["CACHE_BACKEND"].strip().lower()
        return cls(**kwargs)
