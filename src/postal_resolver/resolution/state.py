"""
Persistence for the latest batch outcome.

A saved batch is the full per-row outcome of a run plus the name of the
file it came from. Only the most recent batch is kept; saving replaces it.
A run interrupted by cancellation can be reloaded later and its
SIN_PROCESAR rows resolved without touching the rows already done.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import duckdb

from ..geocoding.models import Coordinate
from ..geocoding.storage import DuckDBCacheStore
from .models import (
    AddressRecord,
    BatchOutcome,
    BatchResult,
    BatchSummary,
    ResolutionMethod,
    ResolutionResult,
    Sentinel,
)

logger = logging.getLogger(__name__)

LATEST_ID = "latest"


@dataclass(frozen=True)
class SavedBatch:
    file_name: str
    saved_at: datetime
    outcome: BatchOutcome

    @property
    def pending(self) -> list[int]:
        """Input positions that never ran."""
        return [r.index for r in self.outcome if r.result.postal_code == Sentinel.SIN_PROCESAR]


def outcome_to_payload(outcome: BatchOutcome) -> dict[str, Any]:
    rows = []
    for r in outcome:
        coordinate = r.result.coordinate
        rows.append({
            "index": r.index,
            "record": r.record.model_dump(),
            "postal_code": r.result.postal_code,
            "lat": coordinate.lat if coordinate is not None else None,
            "lon": coordinate.lon if coordinate is not None else None,
            "sub_area": r.result.sub_area,
            "method": r.result.method.value,
        })
    return {"cancelled": outcome.summary.cancelled, "rows": rows}


def outcome_from_payload(payload: dict[str, Any]) -> BatchOutcome:
    """Rebuild an outcome; the summary is recomputed from the rows."""
    results = []
    for row in sorted(payload.get("rows") or [], key=lambda r: r["index"]):
        lat, lon = row.get("lat"), row.get("lon")
        results.append(BatchResult(
            index=row["index"],
            record=AddressRecord.model_validate(row.get("record") or {}),
            result=ResolutionResult(
                postal_code=row["postal_code"],
                coordinate=Coordinate(lat, lon) if lat is not None and lon is not None else None,
                sub_area=row.get("sub_area"),
                method=ResolutionMethod(row.get("method") or ResolutionMethod.SENTINEL),
            ),
        ))
    summary = BatchSummary.from_results(results, cancelled=bool(payload.get("cancelled")))
    return BatchOutcome(results=results, summary=summary)


class BatchStateStore(ABC):
    """Keeps the most recently saved batch."""

    @abstractmethod
    def save(self, outcome: BatchOutcome, file_name: str = "") -> None:
        pass

    @abstractmethod
    def load(self) -> Optional[SavedBatch]:
        """The saved batch, or None when nothing was saved."""
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class InMemoryBatchStateStore(BatchStateStore):

    def __init__(self):
        self._saved: Optional[tuple[str, datetime, str]] = None
        self._lock = threading.Lock()

    def save(self, outcome: BatchOutcome, file_name: str = "") -> None:
        data = json.dumps(outcome_to_payload(outcome))
        with self._lock:
            self._saved = (file_name, datetime.now(), data)

    def load(self) -> Optional[SavedBatch]:
        with self._lock:
            saved = self._saved
        if saved is None:
            return None
        file_name, saved_at, data = saved
        return SavedBatch(file_name, saved_at, outcome_from_payload(json.loads(data)))

    def clear(self) -> None:
        with self._lock:
            self._saved = None


class DuckDBBatchStateStore(BatchStateStore):
    """
    DuckDB batch state, one row per saved slot.

    Usually shares the connection (and its lock) of the DuckDB geocode
    cache, so a single database file holds both.
    """

    DDL = """
    CREATE TABLE IF NOT EXISTS processor_state (
        id TEXT PRIMARY KEY,
        file_name TEXT,
        data TEXT,
        saved_at TIMESTAMP
    );
    """

    def __init__(self, con: duckdb.DuckDBPyConnection, lock: Optional[threading.Lock] = None):
        self.con = con
        self.lock = lock or threading.Lock()
        with self.lock:
            self.con.execute(self.DDL)

    @classmethod
    def sharing(cls, cache_store: DuckDBCacheStore) -> "DuckDBBatchStateStore":
        return cls(cache_store.con, cache_store.lock)

    def save(self, outcome: BatchOutcome, file_name: str = "") -> None:
        data = json.dumps(outcome_to_payload(outcome))
        with self.lock:
            self.con.execute(
                """
                INSERT INTO processor_state (id, file_name, data, saved_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    file_name = excluded.file_name,
                    data = excluded.data,
                    saved_at = excluded.saved_at
                """,
                [LATEST_ID, file_name, data, datetime.now()],
            )
        logger.info(f"Saved batch state for '{file_name}' ({len(outcome)} rows)")

    def load(self) -> Optional[SavedBatch]:
        with self.lock:
            row = self.con.execute(
                "SELECT file_name, data, saved_at FROM processor_state WHERE id = ?",
                [LATEST_ID],
            ).fetchone()
        if row is None:
            return None
        file_name, data, saved_at = row
        try:
            payload = json.loads(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable batch state: {e}")
            return None
        return SavedBatch(file_name or "", saved_at, outcome_from_payload(payload))

    def clear(self) -> None:
        with self.lock:
            self.con.execute("DELETE FROM processor_state")
