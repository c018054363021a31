"""
Storage backends for the geocode cache.

Implements an in-process store and a DuckDB store for positive and
negative geocoding outcomes, plus the two-tier cache that fronts them.
"""


import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Dict, Tuple

import duckdb

from .base import CacheStore
from .models import Coordinate


logger = logging.getLogger(__name__)


class InMemoryCacheStore(CacheStore):
    """
    Process-local cache store.

    Used for tests and for runs without a configured cache database.
    """

    def __init__(self):
        self._data: Dict[str, Optional[Coordinate]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Tuple[bool, Optional[Coordinate]]:
        with self._lock:
            if key in self._data:
                return True, self._data[key]
        return False, None

    def put(self, key: str, value: Optional[Coordinate]) -> None:
        with self._lock:
            self._data.setdefault(key, value)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class DuckDBCacheStore(CacheStore):
    """
    DuckDB cache store.

    One row per cache key. A row with NULL lat/lon is a cached negative, so
    "looked up and not found" survives restarts just like a coordinate does.
    """

    DDL = """
    CREATE TABLE IF NOT EXISTS geo_cache (
        key TEXT PRIMARY KEY,
        lat DOUBLE,
        lon DOUBLE,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );
    """

    def __init__(self, db_path: Path | str):
        """
        Initialize DuckDB cache storage.

        Args:
            db_path: Path to DuckDB database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.con = duckdb.connect(str(self.db_path))
        self.con.execute(self.DDL)
        # A single connection is shared by every worker thread
        self.lock = threading.Lock()
        logger.info(f"Initialized DuckDB cache: {self.db_path}")

    def get(self, key: str) -> Tuple[bool, Optional[Coordinate]]:
        with self.lock:
            row = self.con.execute(
                "SELECT lat, lon FROM geo_cache WHERE key = ?",
                [key],
            ).fetchone()

        if row is None:
            return False, None
        lat, lon = row
        if lat is None or lon is None:
            return True, None
        return True, Coordinate(float(lat), float(lon))

    def put(self, key: str, value: Optional[Coordinate]) -> None:
        lat, lon = (value.lat, value.lon) if value is not None else (None, None)
        with self.lock:
            self.con.execute(
                """
                INSERT INTO geo_cache (key, lat, lon)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO NOTHING
                """,
                [key, lat, lon],
            )

    def clear(self) -> None:
        with self.lock:
            self.con.execute("DELETE FROM geo_cache")
        logger.info(f"Cleared DuckDB cache: {self.db_path}")

    def count(self) -> int:
        with self.lock:
            result = self.con.execute("SELECT COUNT(*) FROM geo_cache").fetchone()
        return result[0] if result else 0

    def close(self) -> None:
        """Close database connection."""
        if self.con:
            self.con.close()
            logger.info("Closed DuckDB connection")


@dataclass(frozen=True)
class CacheEntry:
    """A cache hit. ``coordinate`` is None for a cached negative."""
    coordinate: Optional[Coordinate]

    @property
    def is_negative(self) -> bool:
        return self.coordinate is None


class GeocodeCache:
    """
    Two-tier geocode cache.

    Lookups check the in-process map first, then the persistent store;
    a persistent hit is copied into the in-process map. ``get`` returns None
    only for keys that were never written.
    """

    def __init__(self, store: Optional[CacheStore] = None):
        self.store = store or InMemoryCacheStore()
        self._memory: Dict[str, Optional[Coordinate]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            if key in self._memory:
                self.hits += 1
                return CacheEntry(self._memory[key])

        found, value = self.store.get(key)
        with self._lock:
            if not found:
                self.misses += 1
                return None
            self._memory.setdefault(key, value)
            self.hits += 1
            return CacheEntry(self._memory[key])

    def put(self, key: str, coordinate: Optional[Coordinate]) -> None:
        """Write-once: an existing entry for ``key`` is never overwritten."""
        with self._lock:
            if key in self._memory:
                return
            self._memory[key] = coordinate
        self.store.put(key, coordinate)

    def clear(self) -> None:
        with self._lock:
            self._memory.clear()
            self.hits = 0
            self.misses = 0
        self.store.clear()

    def close(self) -> None:
        self.store.close()

    def __len__(self) -> int:
        return len(self._memory)
