"""
Core data models for geocoding operations.

These immutable, frozen dataclasses serve as the contract between
the normalizers, providers, cache and resolver.
"""

import re
from dataclasses import dataclass
from enum import IntEnum, StrEnum
from typing import NamedTuple, Optional


class Coordinate(NamedTuple):
    lat: float
    lon: float

    def is_valid(self) -> bool:
        try:
            return -90 <= self.lat <= 90 and -180 <= self.lon <= 180
        except TypeError:
            return False

    def __str__(self) -> str:
        return f"{self.lat}, {self.lon}"


class GeocodeSource(StrEnum):
    """Provider that produced a coordinate."""
    GOOGLE = "google"
    NOMINATIM = "nominatim"
    GEMINI = "gemini"
    CACHE = "cache"
    NONE = "none"


class GeocodeStatus(StrEnum):
    """Status of a single provider call."""
    OK = "ok"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    API_ERROR = "api_error"
    EXCEPTION = "exception"
    NOT_CONFIGURED = "not_configured"


class SimplificationLevel(IntEnum):
    """Progressively coarser geocoding query."""
    FULL = 0     # normalized address + city + department
    STREET = 1   # street name + city + department
    CITY = 2     # city + department only


def make_cache_key(query: str) -> str:
    """Lower-cased, whitespace-collapsed query string."""
    return re.sub(r"\s+", " ", query).strip().lower()


@dataclass(frozen=True)
class ProviderQuery:
    """The query handed to a provider for one simplification level."""
    text: str
    city: str
    department: str = ""
    street: Optional[str] = None
    level: SimplificationLevel = SimplificationLevel.FULL
    is_capital: bool = False


@dataclass(frozen=True)
class ProviderResult:
    """
    The result of a single provider call.

    ``confidence`` is only reported by providers that score their matches
    (Nominatim's ``importance``); it is None otherwise.
    """
    provider: GeocodeSource
    status: GeocodeStatus = GeocodeStatus.NOT_FOUND
    lat: Optional[float] = None
    lon: Optional[float] = None
    confidence: Optional[float] = None
    message: Optional[str] = None

    def is_success(self) -> bool:
        """Both coordinates exist and are within valid geographic ranges."""
        if self.status != GeocodeStatus.OK or self.lat is None or self.lon is None:
            return False
        return self.coordinate.is_valid()

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lon)


@dataclass(frozen=True)
class GeocodeRequest:
    """
    A per-address geocoding request, already normalized.

    Holds the pieces needed to build the query for each simplification
    level. The record cache key is derived from the level-0 query, so it is
    a deterministic function of (address, city, department, recipient).
    """
    address: str
    street: str
    city: str
    department: str = ""
    recipient: str = ""
    country: str = "Colombia"
    is_capital: bool = False

    def _locality(self) -> str:
        return f"{self.city}, {self.department}" if self.department else self.city

    def text_for(self, level: SimplificationLevel) -> str:
        if level == SimplificationLevel.FULL:
            text = f"{self.address}, {self._locality()}"
            if self.recipient:
                text += f", {self.recipient}"
        elif level == SimplificationLevel.STREET:
            text = f"{self.street}, {self._locality()}"
        else:
            text = self._locality()
        return f"{text}, {self.country}"

    def query_for(self, level: SimplificationLevel) -> ProviderQuery:
        if level == SimplificationLevel.FULL:
            street = self.address
        elif level == SimplificationLevel.STREET:
            street = self.street
        else:
            street = None
        return ProviderQuery(
            text=self.text_for(level),
            city=self.city,
            department=self.department,
            street=street or None,
            level=level,
            is_capital=self.is_capital,
        )

    def cache_key(self, level: SimplificationLevel = SimplificationLevel.FULL) -> str:
        return make_cache_key(self.text_for(level))

    def retry_cache_key(self) -> str:
        """Key for the one fresh level-0 attempt made after every level failed."""
        return f"retry|{self.cache_key(SimplificationLevel.FULL)}"
