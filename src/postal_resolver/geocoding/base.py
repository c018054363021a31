"""
Abstract base classes for the geocoding system.

These define the interfaces that all concrete implementations must follow.
"""

import threading
from abc import ABC, abstractmethod
from typing import Optional, Tuple

from .models import Coordinate, ProviderQuery, ProviderResult


class Normalizer(ABC):
    """
    Abstract base for string normalizers.

    Normalizers are responsible for transforming input strings into
    a canonical form (e.g., "Cll 10 No. 5-20" → "Calle 10 # 5-20").
    """

    @abstractmethod
    def normalize(self, value: str, context: Optional[str] = None) -> str:
        """
        Normalize a string value.

        Args:
            value: String to normalize
            context: Optional context (e.g., the city the address belongs to)

        Returns:
            Normalized string
        """
        pass


class Geocoder(ABC):
    """
    Abstract base for coordinate providers.

    A provider takes one free-text (or structured) query and returns zero or
    one candidate. Providers are unreliable by nature: timeouts, rate limits
    and malformed payloads are reported through the result status, never
    raised. The only exception a provider may raise is QuotaExhaustedError.
    """

    name: str = "geocoder"

    @property
    def configured(self) -> bool:
        """Whether the provider has what it needs (keys, flags) to be called."""
        return True

    @abstractmethod
    def geocode(self, query: ProviderQuery, cancel: Optional[threading.Event] = None) -> ProviderResult:
        """
        Geocode a single query.

        Args:
            query: The provider query for the current simplification level
            cancel: Set when the caller has abandoned the record; providers
                that make more than one request stop between requests

        Returns:
            ProviderResult with coordinates (if any) and status
        """
        pass


class CacheStore(ABC):
    """
    Abstract base for the persistent key-value store behind the geocode cache.

    Values are a Coordinate or None (a cached negative). ``get`` returns a
    (hit, value) pair so a stored negative is distinguishable from a key
    that was never written.
    """

    @abstractmethod
    def get(self, key: str) -> Tuple[bool, Optional[Coordinate]]:
        """Return (True, value) for a stored key, (False, None) otherwise."""
        pass

    @abstractmethod
    def put(self, key: str, value: Optional[Coordinate]) -> None:
        """Store a value. Keys are write-once: an existing key is left as is."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove every entry."""
        pass

    def close(self) -> None:
        """Close connections/cleanup resources."""
        pass


class RateLimiter(ABC):
    """Spacing between outbound requests, shared by every caller."""

    @abstractmethod
    def wait(self) -> None:
        """Block until it's safe to make another request."""
        pass
