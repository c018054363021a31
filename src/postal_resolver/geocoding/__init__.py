"""
- Models: Data structures (GeocodeRequest, ProviderQuery, ProviderResult, ...)
- Base classes: Abstract interfaces
- Normalizers: Address, city and admin-code normalization
- Providers: Coordinate lookup implementations
- Throttling: Rate limiting for API calls
- Storage: Two-tier geocode cache and its persistent backends
- Resolver: Multi-level, multi-provider coordinate resolution
"""

from .models import (
    Coordinate,
    GeocodeSource,
    GeocodeStatus,
    SimplificationLevel,
    GeocodeRequest,
    ProviderQuery,
    ProviderResult,
    make_cache_key,
)

from .base import (
    Normalizer,
    Geocoder,
    CacheStore,
    RateLimiter,
)

from .normalizers import (
    AddressNormalizer,
    normalize_text,
    normalize_city_key,
    normalize_admin_code,
    strip_extraneous_parts,
    extract_street,
)

from .throttling import (
    SimpleRateGate,
)

from .providers import (
    GoogleMapsGeocoder,
    NominatimGeocoder,
    GeminiGeocoder,
    build_session,
)

from .storage import (
    InMemoryCacheStore,
    DuckDBCacheStore,
    CacheEntry,
    GeocodeCache,
)

from .resolver import GeocodingResolver

__all__ = [
    # Models
    "Coordinate",
    "GeocodeSource",
    "GeocodeStatus",
    "SimplificationLevel",
    "GeocodeRequest",
    "ProviderQuery",
    "ProviderResult",
    "make_cache_key",
    # Base classes
    "Normalizer",
    "Geocoder",
    "CacheStore",
    "RateLimiter",
    # Normalizers
    "AddressNormalizer",
    "normalize_text",
    "normalize_city_key",
    "normalize_admin_code",
    "strip_extraneous_parts",
    "extract_street",
    # Throttling
    "SimpleRateGate",
    # Providers
    "GoogleMapsGeocoder",
    "NominatimGeocoder",
    "GeminiGeocoder",
    "build_session",
    # Storage
    "InMemoryCacheStore",
    "DuckDBCacheStore",
    "CacheEntry",
    "GeocodeCache",
    # Resolver
    "GeocodingResolver",
]
