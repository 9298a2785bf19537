from __future__ import annotations

import asyncio
import logging

import httpx

from .config import RefreshSettings
from .errors import ProviderMalformedResponse, ProviderUnavailable
from .models import CountryDescriptor

logger = logging.getLogger(__name__)

# The API accepts any username; the key goes in the password slot.
API_USERNAME = "footprint-seeds"


class FootprintClient:
    """Async client for the Global Footprint Network data API."""

    def __init__(self, settings: RefreshSettings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._client = client
        self._owns_client = client is None
        self._semaphore = asyncio.Semaphore(settings.max_concurrency) if settings.max_concurrency else None

    async def __aenter__(self) -> FootprintClient:
        if self._client is None:
            auth = (API_USERNAME, self.settings.api_key) if self.settings.api_key else None
            self._client = httpx.AsyncClient(
                base_url=self.settings.api_url,
                auth=auth,
                timeout=self.settings.request_timeout,
                headers={"Accept": "application/json"},
            )
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, path: str):
        if self._client is None:
            raise RuntimeError("FootprintClient used outside of 'async with'")
        try:
            if self._semaphore is None:
                resp = await self._client.get(path)
            else:
                async with self._semaphore:
                    resp = await self._client.get(path)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ProviderUnavailable(path, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ProviderUnavailable(path, type(e).__name__) from e
        try:
            return resp.json()
        except ValueError as e:
            raise ProviderMalformedResponse(path, "body is not JSON") from e

    async def get_countries(self) -> list[CountryDescriptor]:
        path = "/countries"
        payload = await self._get_json(path)
        if not isinstance(payload, list):
            raise ProviderMalformedResponse(path, "expected a list of countries")

        out: list[CountryDescriptor] = []
        for row in payload:
            if not isinstance(row, dict):
                raise ProviderMalformedResponse(path, f"unexpected country row {row!r}")
            code = row.get("countryCode")
            name = row.get("countryName")
            if code is None or not isinstance(name, str):
                raise ProviderMalformedResponse(path, f"country row missing code/name: {row!r}")
            out.append(CountryDescriptor(country_code=str(code), country_name=name))
        logger.debug("provider listed %d countries", len(out))
        return out

    async def fetch_country_footprint(self, country_code: str) -> list[dict]:
        path = f"/data/{country_code}/all/{self.settings.record_type}"
        payload = await self._get_json(path)
        if not isinstance(payload, list) or not payload:
            raise ProviderMalformedResponse(path, "expected a non-empty list of records")
        if not all(isinstance(r, dict) for r in payload):
            raise ProviderMalformedResponse(path, "records must be objects")
        return payload
