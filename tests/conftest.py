from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Optional

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


from postal_resolver.geocoding.base import Geocoder
from postal_resolver.geocoding.models import GeocodeSource, GeocodeStatus, ProviderQuery, ProviderResult
from postal_resolver.geocoding.resolver import GeocodingResolver
from postal_resolver.geocoding.storage import GeocodeCache, InMemoryCacheStore
from postal_resolver.zones.zone import PostalZone


def square(lon: float, lat: float, half: float = 0.01) -> dict:
    """Axis-aligned square polygon centred on (lon, lat)."""
    return {
        "type": "Polygon",
        "coordinates": [[
            [lon - half, lat - half],
            [lon + half, lat - half],
            [lon + half, lat + half],
            [lon - half, lat + half],
            [lon - half, lat - half],
        ]],
    }


def make_zone(postal_code: str, lon: float, lat: float, municipality: str = "Cali",
              admin_code: str = "76001", department: str = "Valle del Cauca",
              sub_area: Optional[str] = None, half: float = 0.01) -> PostalZone:
    return PostalZone(
        id=f"z-{postal_code}",
        postal_code=postal_code,
        admin_code=admin_code,
        municipality=municipality,
        department=department,
        sub_area=sub_area,
        geometry=square(lon, lat, half),
    )


class FakeGeocoder(Geocoder):
    """In-process provider: answers from a function of the query, records every call."""

    def __init__(self, name: str = "nominatim",
                 answer: Optional[Callable[[ProviderQuery], ProviderResult]] = None,
                 configured: bool = True):
        self.name = name
        self._answer = answer
        self._configured = configured
        self.calls: list[ProviderQuery] = []

    @property
    def configured(self) -> bool:
        return self._configured

    def geocode(self, query: ProviderQuery, cancel=None) -> ProviderResult:
        self.calls.append(query)
        if self._answer is None:
            return self.miss()
        return self._answer(query)

    def hit(self, lat: float, lon: float, confidence: Optional[float] = None) -> ProviderResult:
        return ProviderResult(provider=GeocodeSource(self.name), status=GeocodeStatus.OK,
                              lat=lat, lon=lon, confidence=confidence)

    def miss(self, status: GeocodeStatus = GeocodeStatus.NOT_FOUND) -> ProviderResult:
        return ProviderResult(provider=GeocodeSource(self.name), status=status)


@pytest.fixture
def cache() -> GeocodeCache:
    return GeocodeCache(InMemoryCacheStore())


@pytest.fixture
def make_resolver(cache):
    def _make(**kwargs) -> GeocodingResolver:
        kwargs.setdefault("rate_limit_base_delay_s", 0.0)
        return GeocodingResolver(cache=cache, **kwargs)
    return _make


@pytest.fixture
def cali_zones() -> list[PostalZone]:
    return [
        make_zone("760212", lon=-76.5197, lat=3.4372, sub_area="Comuna 2"),
        make_zone("760001", lon=-76.5300, lat=3.4500, sub_area="Comuna 3"),
    ]
