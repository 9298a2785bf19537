from __future__ import annotations


class RefreshError(Exception):
    """Base class for failures surfaced by an emissions refresh."""


class ProviderUnavailable(RefreshError):
    def __init__(self, url: str, reason: str = ""):
        self.url = url
        self.reason = reason
        super().__init__(f"provider unavailable: {url} {reason}".rstrip())


class ProviderMalformedResponse(RefreshError):
    def __init__(self, url: str, reason: str = ""):
        self.url = url
        self.reason = reason
        super().__init__(f"malformed provider response: {url} {reason}".rstrip())


class CacheUnavailable(RefreshError):
    def __init__(self, key: str, reason: str = ""):
        self.key = key
        self.reason = reason
        super().__init__(f"cache unavailable for key {key!r} {reason}".rstrip())


class PartialFetchFailure(RefreshError):
    """Some (or all) countries were dropped, by a failed fetch or unusable records."""

    def __init__(self, count: int, requested: int, countries: list[str] | None = None):
        self.count = count
        self.requested = requested
        self.countries = list(countries or [])
        super().__init__(f"{count} of {requested} countries dropped")

    @property
    def total(self) -> bool:
        return self.requested > 0 and self.count >= self.requested


class NothingToRefresh(RefreshError):
    """The provider listed no countries outside the skip-list."""

    def __init__(self, listed: int):
        self.listed = listed
        super().__init__(f"none of the {listed} listed countries is eligible for refresh")
