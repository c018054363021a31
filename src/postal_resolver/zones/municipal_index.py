import logging
import threading
from typing import Iterable, Optional

from ..geocoding.normalizers import normalize_admin_code, normalize_city_key
from .zone import MunicipalIndexEntry

logger = logging.getLogger(__name__)


class MunicipalIndex:
    """Reference postal codes per municipality, keyed by admin code.

    Entries are upserted: a new entry for an admin code replaces the old
    one, other admin codes are left untouched.
    """

    def __init__(self, entries: Optional[Iterable[MunicipalIndexEntry]] = None):
        self._lock = threading.Lock()
        self._by_admin: dict[str, MunicipalIndexEntry] = {}
        self._by_name: dict[str, str] = {}
        if entries is not None:
            self.upsert(entries)

    def upsert(self, entries: Iterable[MunicipalIndexEntry]) -> int:
        count = 0
        with self._lock:
            for entry in entries:
                key = normalize_admin_code(entry.admin_code)
                if not key or key == "00000":
                    continue
                self._by_admin[key] = entry
                if entry.municipality:
                    self._by_name[normalize_city_key(entry.municipality)] = key
                count += 1
        logger.info(f"Upserted {count} municipal index entries ({len(self._by_admin)} total)")
        return count

    def get(self, admin_code: Optional[str]) -> Optional[MunicipalIndexEntry]:
        key = normalize_admin_code(admin_code)
        if not key:
            return None
        return self._by_admin.get(key)

    def by_city_name(self, city: Optional[str]) -> Optional[MunicipalIndexEntry]:
        key = self._by_name.get(normalize_city_key(city))
        return self._by_admin.get(key) if key else None

    def clear(self) -> None:
        with self._lock:
            self._by_admin.clear()
            self._by_name.clear()

    def __len__(self) -> int:
        return len(self._by_admin)
