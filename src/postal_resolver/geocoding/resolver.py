"""
Multi-provider, multi-precision coordinate resolution.

The resolver walks an explicit (simplification level, rate-limit retry)
state space. At each level it tries the cache, then the primary, secondary
and tertiary providers in order, and escalates to a coarser query when a
level yields nothing usable.
"""

import logging
import threading
import time
from typing import Optional

from ..utils.errors import RecordAbandonedError
from .base import Geocoder
from .models import (
    Coordinate,
    GeocodeRequest,
    GeocodeStatus,
    ProviderResult,
    SimplificationLevel,
)
from .normalizers import (
    AddressNormalizer,
    CAPITAL_CITY_NAME,
    CAPITAL_DEPARTMENT_NAME,
    extract_street,
    is_capital,
    strip_extraneous_parts,
)
from .storage import GeocodeCache

logger = logging.getLogger(__name__)

LEVELS = (SimplificationLevel.FULL, SimplificationLevel.STREET, SimplificationLevel.CITY)


class GeocodingResolver:
    """
    Resolve an address to a coordinate.

    Args:
        cache: Two-tier cache shared by every worker
        primary: Precise, quota-limited provider (may be None or unconfigured)
        secondary: Free, rate-limited provider that reports a confidence
        tertiary: LLM-grounded provider, only called when configured
        min_importance_precise: Minimum secondary confidence at level 0
        min_importance_coarse: Minimum secondary confidence at levels 1-2
        max_rate_limit_retries: Backoff attempts on secondary rate limiting
        rate_limit_base_delay_s: First backoff delay, doubled on each attempt
    """

    def __init__(
        self,
        cache: GeocodeCache,
        primary: Optional[Geocoder] = None,
        secondary: Optional[Geocoder] = None,
        tertiary: Optional[Geocoder] = None,
        normalizer: Optional[AddressNormalizer] = None,
        min_importance_precise: float = 0.7,
        min_importance_coarse: float = 0.5,
        max_rate_limit_retries: int = 5,
        rate_limit_base_delay_s: float = 1.0,
        country_name: str = "Colombia",
    ):
        self.cache = cache
        self.primary = primary
        self.secondary = secondary
        self.tertiary = tertiary
        self.normalizer = normalizer or AddressNormalizer()
        self.min_importance_precise = min_importance_precise
        self.min_importance_coarse = min_importance_coarse
        self.max_rate_limit_retries = max_rate_limit_retries
        self.rate_limit_base_delay_s = rate_limit_base_delay_s
        self.country_name = country_name

    def build_request(
        self,
        address: str,
        city: str,
        department: str = "",
        recipient: str = "",
    ) -> GeocodeRequest:
        """Normalize the raw pieces into a GeocodeRequest."""
        normalized = self.normalizer.normalize(address or "")
        capital = is_capital(city)
        strict_city = CAPITAL_CITY_NAME if capital else (city or "").strip()
        primary = strip_extraneous_parts(normalized, strict_city)
        strict_department = (department or "").strip()
        if capital and not strict_department:
            strict_department = CAPITAL_DEPARTMENT_NAME

        return GeocodeRequest(
            address=primary,
            street=extract_street(normalized),
            city=strict_city,
            department=strict_department,
            recipient=(recipient or "").strip(),
            country=self.country_name,
            is_capital=capital,
        )

    def resolve(
        self,
        request: GeocodeRequest,
        start_level: SimplificationLevel = SimplificationLevel.FULL,
        retry: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> Optional[Coordinate]:
        """
        Resolve a request to a coordinate, or None when every level fails.

        Args:
            request: Normalized request
            start_level: First simplification level to try. Only runs that
                start at level 0 read and write the per-record cache entry.
            retry: One fresh attempt at level 0 only. It skips the record's
                cached negative and is cached under its own retry key.
            cancel: Set by the caller to abandon the record; checked before
                every provider call and during backoff sleeps

        Returns:
            Coordinate or None

        Raises:
            QuotaExhaustedError: A provider's request quota is exhausted
            RecordAbandonedError: ``cancel`` was set during resolution
        """
        if retry:
            return self._retry(request, cancel)

        record_key = request.cache_key(SimplificationLevel.FULL)
        owns_record_key = start_level == SimplificationLevel.FULL

        if owns_record_key:
            entry = self.cache.get(record_key)
            if entry is not None:
                return entry.coordinate

        levels = [lv for lv in LEVELS if lv >= start_level]
        level_idx = 0
        attempt = 0

        while level_idx < len(levels):
            level = levels[level_idx]
            key = request.cache_key(level)

            # Level 0 shares the record key, which was checked above
            if level != SimplificationLevel.FULL:
                entry = self.cache.get(key)
                if entry is not None:
                    if entry.coordinate is not None:
                        return self._accept(entry.coordinate, key, record_key if owns_record_key else None)
                    level_idx += 1
                    continue

            outcome = self._try_level(request, level, attempt, cancel)
            if isinstance(outcome, Coordinate):
                return self._accept(outcome, key, record_key if owns_record_key else None)
            if outcome == "retry":
                attempt += 1
                continue

            if level != SimplificationLevel.FULL:
                self.cache.put(key, None)
            level_idx += 1

        if owns_record_key:
            self.cache.put(record_key, None)
        logger.warning(f"No coordinate for '{request.text_for(start_level)}' from level {int(start_level)} on")
        return None

    def _retry(self, request: GeocodeRequest, cancel: Optional[threading.Event]) -> Optional[Coordinate]:
        retry_key = request.retry_cache_key()
        entry = self.cache.get(retry_key)
        if entry is not None:
            return entry.coordinate

        level = SimplificationLevel.FULL
        attempt = 0
        outcome = self._try_level(request, level, attempt, cancel)
        while outcome == "retry":
            attempt += 1
            outcome = self._try_level(request, level, attempt, cancel)

        coordinate = outcome if isinstance(outcome, Coordinate) else None
        self.cache.put(retry_key, coordinate)
        return coordinate

    def _try_level(
        self,
        request: GeocodeRequest,
        level: SimplificationLevel,
        attempt: int,
        cancel: Optional[threading.Event],
    ):
        """
        Run the provider chain for one level.

        Returns a Coordinate on success, "retry" when the level should be
        repeated after a rate-limit backoff, or None to escalate.
        """
        query = request.query_for(level)

        if self.primary is not None and self.primary.configured:
            self._check_cancel(cancel)
            result = self.primary.geocode(query, cancel)
            if result.is_success():
                return result.coordinate

        if self.secondary is not None:
            self._check_cancel(cancel)
            result = self.secondary.geocode(query, cancel)

            if result.status == GeocodeStatus.RATE_LIMITED:
                if attempt < self.max_rate_limit_retries:
                    delay = self.rate_limit_base_delay_s * (2 ** attempt)
                    logger.warning(
                        f"{self.secondary.name} rate limited (attempt {attempt + 1}/"
                        f"{self.max_rate_limit_retries}), waiting {delay:.1f}s"
                    )
                    self._sleep(delay, cancel)
                    return "retry"
            elif result.is_success():
                if self._confident(result, level):
                    return result.coordinate
                if level < SimplificationLevel.CITY:
                    logger.warning(
                        f"{self.secondary.name} low confidence ({result.confidence}) at level "
                        f"{int(level)}, simplifying query"
                    )
                    return None

        if self.tertiary is not None and self.tertiary.configured:
            self._check_cancel(cancel)
            result = self.tertiary.geocode(query, cancel)
            if result.is_success():
                return result.coordinate

        return None

    def _confident(self, result: ProviderResult, level: SimplificationLevel) -> bool:
        threshold = self.min_importance_precise if level == SimplificationLevel.FULL else self.min_importance_coarse
        return result.confidence is not None and result.confidence >= threshold

    def _accept(self, coordinate: Coordinate, key: str, record_key: Optional[str]) -> Coordinate:
        self.cache.put(key, coordinate)
        if record_key and record_key != key:
            self.cache.put(record_key, coordinate)
        return coordinate

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event]) -> None:
        if cancel is not None and cancel.is_set():
            raise RecordAbandonedError()

    @staticmethod
    def _sleep(delay: float, cancel: Optional[threading.Event]) -> None:
        if cancel is None:
            time.sleep(delay)
            return
        if cancel.wait(delay):
            raise RecordAbandonedError()
