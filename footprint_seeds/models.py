from dataclasses import dataclass, field

from .config import normalize_country_name
from .errors import PartialFetchFailure, RefreshError


@dataclass(frozen=True)
class CountryDescriptor:
    country_code: str
    country_name: str

    @property
    def normalized_name(self) -> str:
        return normalize_country_name(self.country_name)


@dataclass
class RefreshResult:
    entries: list[dict] = field(default_factory=list)
    refreshed_at: int | None = None
    requested: int = 0
    dropped: PartialFetchFailure | None = None
    error: RefreshError | Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def written(self) -> bool:
        return self.refreshed_at is not None
