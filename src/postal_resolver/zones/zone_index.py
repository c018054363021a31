"""
In-memory lookup structures over the loaded postal zones.

The index is rebuilt in one pass whenever the zone set is replaced, so
lookups by admin code, municipality name and postal code are dict hits.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional

from ..geocoding.normalizers import (
    ADMIN_CODE_WIDTH,
    admin_code_digits,
    normalize_admin_code,
    normalize_city_key,
    normalize_text,
)
from .zone import PostalZone

logger = logging.getLogger(__name__)

# Bucket for zones loaded without an admin code
UNKNOWN_ADMIN_CODE = "00000"


@dataclass
class ZonePage:
    """One page of a zone search."""
    items: list[PostalZone] = field(default_factory=list)
    total: int = 0
    page: int = 1
    total_pages: int = 0


def _postal_sort_key(zone: PostalZone) -> tuple[int, float, str]:
    try:
        return (0, int(zone.postal_code), zone.postal_code)
    except ValueError:
        return (1, math.inf, zone.postal_code)


class ZoneIndex:
    """
    Postal zones plus the lookup maps built over them.

    ``load`` replaces the whole zone set (clear-then-bulk-load); every other
    method is a read. Readers always see either the old or the new set,
    never a mix, because the maps are swapped in as a group.
    """

    def __init__(self, zones: Optional[Iterable[PostalZone]] = None):
        self._lock = threading.Lock()
        self._zones: list[PostalZone] = []
        self._by_admin: dict[str, list[PostalZone]] = {}
        self._by_city: dict[str, list[PostalZone]] = {}
        self._by_postal: dict[str, PostalZone] = {}
        if zones is not None:
            self.load(zones)

    def load(self, zones: Iterable[PostalZone]) -> int:
        """Replace the zone set and rebuild every map. Returns the zone count."""
        mem: list[PostalZone] = []
        by_admin: dict[str, list[PostalZone]] = {}
        by_city: dict[str, list[PostalZone]] = {}
        by_postal: dict[str, PostalZone] = {}

        for zone in zones:
            mem.append(zone)
            by_admin.setdefault(normalize_admin_code(zone.admin_code) or UNKNOWN_ADMIN_CODE, []).append(zone)
            by_city.setdefault(normalize_city_key(zone.municipality), []).append(zone)
            by_postal.setdefault(zone.postal_code, zone)

        with self._lock:
            self._zones = mem
            self._by_admin = by_admin
            self._by_city = by_city
            self._by_postal = by_postal

        logger.info(
            f"Built zone index: {len(mem)} zones, {len(by_admin)} admin codes, "
            f"{len(by_city)} municipality keys"
        )
        return len(mem)

    def clear(self) -> None:
        self.load([])

    def __len__(self) -> int:
        return len(self._zones)

    def __iter__(self) -> Iterator[PostalZone]:
        return iter(self._zones)

    @property
    def zones(self) -> list[PostalZone]:
        return list(self._zones)

    # Lookups

    def by_admin_code(self, code: Optional[str]) -> list[PostalZone]:
        """Zones whose zero-padded admin code equals the normalized ``code``."""
        key = normalize_admin_code(code)
        if not key or key == UNKNOWN_ADMIN_CODE:
            return []
        return list(self._by_admin.get(key, []))

    def by_admin_code_fuzzy(self, code: Optional[str]) -> list[PostalZone]:
        """
        Admin-code match tolerant of padding and over-long codes.

        Tries the zero-padded trailing five digits first, then, for codes
        longer than five digits, the leading five. Zones without an admin
        code are never matched.
        """
        digits = admin_code_digits(code)
        if not digits:
            return []

        keys = [normalize_admin_code(digits)]
        if len(digits) > ADMIN_CODE_WIDTH:
            keys.append(digits[:ADMIN_CODE_WIDTH])

        for key in keys:
            if key == UNKNOWN_ADMIN_CODE:
                continue
            found = self._by_admin.get(key)
            if found:
                return list(found)
        return []

    def by_city(self, name: Optional[str]) -> list[PostalZone]:
        key = normalize_city_key(name)
        if not key:
            return []
        return list(self._by_city.get(key, []))

    def by_city_key(self, key: str) -> list[PostalZone]:
        """Lookup with an already-normalized municipality key."""
        return list(self._by_city.get(key, []))

    def by_department(self, name: Optional[str]) -> list[PostalZone]:
        target = normalize_text(name)
        if not target:
            return []
        return [z for z in self._zones if normalize_text(z.department) == target]

    def by_postal_code(self, postal_code: Optional[str]) -> Optional[PostalZone]:
        if not postal_code:
            return None
        return self._by_postal.get(postal_code)

    def containing(self, lon: float, lat: float, candidates: Optional[Iterable[PostalZone]] = None) -> Optional[PostalZone]:
        """First zone (among ``candidates``, or all zones) containing the point."""
        for zone in (self._zones if candidates is None else candidates):
            if zone.contains(lon, lat):
                return zone
        return None

    def search(self, query: str = "", page: int = 1, limit: int = 20) -> ZonePage:
        """
        Page through zones sorted by numeric postal code.

        ``query`` filters (accent- and case-insensitively) on municipality,
        postal code and department. Out-of-range pages are clamped.
        """
        if limit <= 0:
            raise ValueError("limit must be > 0")

        zones = self._zones
        q = normalize_text(query)
        if q:
            zones = [
                z for z in zones
                if q in normalize_text(z.municipality)
                or q in normalize_text(z.postal_code)
                or q in normalize_text(z.department)
            ]
        zones = sorted(zones, key=_postal_sort_key)

        total = len(zones)
        total_pages = math.ceil(total / limit)
        safe_page = max(1, min(page, total_pages or 1))
        start = (safe_page - 1) * limit
        return ZonePage(
            items=zones[start:start + limit],
            total=total,
            page=safe_page,
            total_pages=total_pages,
        )
