"""
Per-record postal code triangulation.

Combines municipality candidate filtering over the zone index, geocoding
at decreasing precision, point-in-polygon matching and the reference
municipal index into one deterministic fallback chain that always ends in
a postal code or a sentinel.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from ..geocoding.models import Coordinate, SimplificationLevel
from ..geocoding.normalizers import (
    CAPITAL_CITY_NAME,
    CAPITAL_DEPARTMENT_NAME,
    is_capital,
    normalize_admin_code,
    normalize_city_key,
    normalize_text,
)
from ..geocoding.resolver import GeocodingResolver
from ..utils.errors import QuotaExhaustedError, RecordAbandonedError
from ..zones.municipal_index import MunicipalIndex
from ..zones.zone import AreaType, MunicipalIndexEntry, PostalZone
from ..zones.zone_index import ZoneIndex
from .models import AddressRecord, ResolutionMethod, ResolutionResult, Sentinel

logger = logging.getLogger(__name__)

RURAL_MARKERS = re.compile(r"vereda|rural|finca|km\s*\d", re.I)

# Alternative official names keyed by the common short name (both directions)
CITY_SYNONYMS: dict[str, tuple[str, ...]] = {
    "cucuta": ("san jose de cucuta",),
    "san jose de cucuta": ("cucuta",),
    "cartagena": ("cartagena de indias",),
    "cartagena de indias": ("cartagena",),
    "santa marta": ("santa marta distrito turistico cultural e historico",),
    "mompos": ("santa cruz de mompox", "mompox"),
    "tumaco": ("san andres de tumaco",),
}

# Any city key containing one of these collapses to it
CANONICAL_CITY_TOKENS = ("bogota", "ibague", "barranquilla", "medellin")

SubAreaLookup = Callable[[float, float], Optional[str]]


@dataclass(frozen=True)
class _Context:
    record: AddressRecord
    city: str
    candidates: Sequence[PostalZone]
    coordinate: Optional[Coordinate] = None


FallbackStrategy = Callable[["AddressResolver", _Context], Optional[ResolutionResult]]


class AddressResolver:
    """
    Resolve one AddressRecord to a postal code or a sentinel.

    Args:
        zones: Zone index shared by every worker
        municipal_index: Reference postal codes per municipality
        geocoder: Coordinate resolver (cache + providers)
        sub_area_lookup: Optional reverse lookup (lat, lon) -> district name
        prefer_municipal_index: Return the municipal index code for a known
            admin code before trying to geocode
    """

    def __init__(
        self,
        zones: ZoneIndex,
        municipal_index: MunicipalIndex,
        geocoder: GeocodingResolver,
        sub_area_lookup: Optional[SubAreaLookup] = None,
        prefer_municipal_index: bool = True,
    ):
        self.zones = zones
        self.municipal_index = municipal_index
        self.geocoder = geocoder
        self.sub_area_lookup = sub_area_lookup
        self.prefer_municipal_index = prefer_municipal_index

    def resolve(self, record: AddressRecord, cancel: Optional[threading.Event] = None) -> ResolutionResult:
        """
        Resolve a record.

        Raises:
            QuotaExhaustedError: propagated untouched so the batch can pause
            RecordAbandonedError: the batch abandoned this record
        """
        try:
            return self._resolve(record, cancel)
        except (QuotaExhaustedError, RecordAbandonedError):
            raise
        except Exception:
            logger.exception(f"Unexpected error resolving '{record.address}', '{record.city}'")
            return ResolutionResult.sentinel(Sentinel.ERROR_GEOCODIFICACION)

    def _resolve(self, record: AddressRecord, cancel: Optional[threading.Event]) -> ResolutionResult:
        if not record.city and not record.address:
            return ResolutionResult.sentinel(Sentinel.DATOS_INCOMPLETOS)

        clean_city = re.sub(r"\(.*?\)", "", record.city).strip()
        strict_city = CAPITAL_CITY_NAME if is_capital(clean_city) else clean_city
        candidates = self.find_candidates(record)

        if self.prefer_municipal_index:
            direct = self._municipal_shortcut(record, candidates)
            if direct is not None:
                return direct

        if not candidates:
            logger.warning(
                f"No zones for city='{record.city}' admin_code='{record.admin_code}' "
                f"({len(self.zones)} zones loaded)"
            )
            return ResolutionResult.sentinel(Sentinel.MUNICIPIO_SIN_ZONAS)

        if not record.address:
            return ResolutionResult.sentinel(Sentinel.DATOS_INCOMPLETOS)

        department = record.department or candidates[0].department
        request = self.geocoder.build_request(record.address, strict_city, department, record.recipient)

        coordinate = self.geocoder.resolve(request, cancel=cancel)
        if coordinate is not None:
            match = self._match(coordinate, candidates)
            if match is not None:
                return match

            logger.warning(f"Point {coordinate} is outside every zone for '{record.city}', trying street level")
            street_coordinate = self.geocoder.resolve(
                request, start_level=SimplificationLevel.STREET, cancel=cancel
            )
            if street_coordinate is not None:
                match = self._match(street_coordinate, candidates)
                if match is not None:
                    return match

            ctx = _Context(record, strict_city, candidates, street_coordinate or coordinate)
            return self._fall_back(ctx) or ResolutionResult.sentinel(
                Sentinel.REVISAR_DIRECCION, coordinate=ctx.coordinate
            )

        # Every level failed: one fresh attempt at full precision
        retry_coordinate = self.geocoder.resolve(request, retry=True, cancel=cancel)
        if retry_coordinate is not None:
            match = self._match(retry_coordinate, candidates)
            if match is not None:
                return match

        ctx = _Context(record, strict_city, candidates, retry_coordinate)
        fallback = self._fall_back(ctx)
        if fallback is not None:
            return fallback
        if retry_coordinate is not None:
            return ResolutionResult.sentinel(Sentinel.REVISAR_DIRECCION, coordinate=retry_coordinate)
        return ResolutionResult.sentinel(Sentinel.DIR_NO_ENCONTRADA)

    # Candidate zones

    def find_candidates(self, record: AddressRecord) -> list[PostalZone]:
        """First non-empty result of the candidate strategies, in order."""
        for strategy in (
            self._candidates_by_name,
            self._candidates_by_synonym,
            self._candidates_by_admin_code,
            self._candidates_by_department,
        ):
            found = strategy(record)
            if found:
                logger.debug(f"{len(found)} candidate zones via {strategy.__name__}")
                return found
        return []

    def _candidates_by_name(self, record: AddressRecord) -> list[PostalZone]:
        return self.zones.by_city(record.city)

    def _candidates_by_synonym(self, record: AddressRecord) -> list[PostalZone]:
        key = normalize_city_key(record.city)
        if not key:
            return []

        synonyms: list[str] = []
        base = re.sub(r"\bdc\b", "", key).strip()
        if base and base != key:
            synonyms.append(base)
        synonyms.extend(CITY_SYNONYMS.get(key, ()))
        synonyms.extend(token for token in CANONICAL_CITY_TOKENS if token in key and token != key)

        for synonym in synonyms:
            found = self.zones.by_city_key(synonym)
            if found:
                return found
        return []

    def _candidates_by_admin_code(self, record: AddressRecord) -> list[PostalZone]:
        return self.zones.by_admin_code_fuzzy(record.admin_code)

    def _candidates_by_department(self, record: AddressRecord) -> list[PostalZone]:
        found = self.zones.by_department(record.department)
        if not found and is_capital(record.city):
            found = self.zones.by_department(CAPITAL_DEPARTMENT_NAME)
        return found

    # Matching

    def _match(self, coordinate: Coordinate, candidates: Sequence[PostalZone]) -> Optional[ResolutionResult]:
        zone = self.zones.containing(coordinate.lon, coordinate.lat, candidates)
        if zone is None:
            return None
        return ResolutionResult(
            postal_code=zone.postal_code,
            coordinate=coordinate,
            sub_area=zone.sub_area,
            method=ResolutionMethod.POLYGON,
        )

    def _municipal_shortcut(self, record: AddressRecord, candidates: Sequence[PostalZone]) -> Optional[ResolutionResult]:
        admin = normalize_admin_code(record.admin_code)
        if not admin or admin == "00000":
            return None
        entry = self.municipal_index.get(admin)
        if entry is None or not entry.preferred_postal_code:
            return None

        selected = entry.preferred_postal_code
        if record.address and len(entry.entries) > 1:
            area = AreaType.RURAL if RURAL_MARKERS.search(record.address) else AreaType.URBAN
            refined = entry.entry_for(area)
            if refined is not None:
                selected = refined.postal_code

        logger.debug(f"Admin code {admin} resolved by municipal index to {selected}")
        return self._index_result(entry, selected, candidates)

    def _index_result(
        self,
        entry: MunicipalIndexEntry,
        postal_code: str,
        candidates: Sequence[PostalZone],
        coordinate: Optional[Coordinate] = None,
    ) -> ResolutionResult:
        zone = next((z for z in candidates if z.postal_code == postal_code), None) \
            or self.zones.by_postal_code(postal_code)
        sub_area = entry.municipality or None
        if zone is not None:
            coordinate = Coordinate(zone.center_lat, zone.center_lon)
            sub_area = zone.sub_area or sub_area
        return ResolutionResult(
            postal_code=postal_code,
            coordinate=coordinate,
            sub_area=sub_area,
            method=ResolutionMethod.MUNICIPAL_INDEX,
        )

    # Fallback tiers, tried in order until one returns a result

    def _fall_back(self, ctx: _Context) -> Optional[ResolutionResult]:
        for strategy in FALLBACK_STRATEGIES:
            result = strategy(self, ctx)
            if result is not None:
                logger.debug(f"Fallback {strategy.__name__} gave {result.postal_code}")
                return result
        return None

    def _by_sub_area(self, ctx: _Context) -> Optional[ResolutionResult]:
        if ctx.coordinate is None or self.sub_area_lookup is None:
            return None
        name = self.sub_area_lookup(ctx.coordinate.lat, ctx.coordinate.lon)
        if not name:
            return None
        target = normalize_text(name)
        zone = next((z for z in ctx.candidates if z.sub_area and normalize_text(z.sub_area) == target), None)
        if zone is None:
            return None
        return ResolutionResult(
            postal_code=zone.postal_code,
            coordinate=ctx.coordinate,
            sub_area=name,
            method=ResolutionMethod.SUB_AREA,
        )

    def _by_index_admin_code(self, ctx: _Context) -> Optional[ResolutionResult]:
        entry = self.municipal_index.get(ctx.record.admin_code) if ctx.record.admin_code else None
        if entry is None or not entry.preferred_postal_code:
            return None
        return self._index_result(entry, entry.preferred_postal_code, ctx.candidates, ctx.coordinate)

    def _by_index_city(self, ctx: _Context) -> Optional[ResolutionResult]:
        entry = self.municipal_index.by_city_name(ctx.city)
        if entry is None or not entry.preferred_postal_code:
            return None
        return self._index_result(entry, entry.preferred_postal_code, ctx.candidates, ctx.coordinate)


FALLBACK_STRATEGIES: tuple[FallbackStrategy, ...] = (
    AddressResolver._by_sub_area,
    AddressResolver._by_index_admin_code,
    AddressResolver._by_index_city,
)
