"""
Records, results and sentinels exchanged by the orchestrator and the batch.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, field_validator

from ..geocoding.models import Coordinate


class Sentinel(StrEnum):
    """Non-numeric postal code values that classify a failure."""
    DATOS_INCOMPLETOS = "DATOS_INCOMPLETOS"          # no city and no address
    MUNICIPIO_SIN_ZONAS = "MUNICIPIO_SIN_ZONAS"      # no candidate zones, no index entry
    DIR_NO_ENCONTRADA = "DIR_NO_ENCONTRADA"          # every geocoding level failed
    REVISAR_DIRECCION = "REVISAR_DIRECCION"          # coordinate found, no zone/index match
    ERROR_GEOCODIFICACION = "ERROR_GEOCODIFICACION"  # unclassified exception
    SIN_PROCESAR = "SIN_PROCESAR"                    # batch cancelled before this record ran


class ResolutionMethod(StrEnum):
    """How a postal code was obtained."""
    POLYGON = "polygon"
    SUB_AREA = "sub_area"
    MUNICIPAL_INDEX = "municipal_index"
    SENTINEL = "sentinel"


class AddressRecord(BaseModel):
    """One input row."""

    admin_code: str = ""
    city: str = ""
    department: str = ""
    address: str = ""
    recipient: str = ""

    @field_validator("admin_code", "city", "department", "address", "recipient", mode="before")
    @classmethod
    def _blank_missing(cls, v: Any) -> str:
        # pandas hands over NaN for empty cells
        if v is None or (isinstance(v, float) and v != v):
            return ""
        if isinstance(v, float) and v.is_integer():
            v = int(v)
        return str(v).strip()


@dataclass(frozen=True)
class ResolutionResult:
    """Postal code (or sentinel) for one record, with the evidence behind it."""
    postal_code: str
    coordinate: Optional[Coordinate] = None
    sub_area: Optional[str] = None
    method: ResolutionMethod = ResolutionMethod.SENTINEL

    @classmethod
    def sentinel(cls, value: Sentinel, coordinate: Optional[Coordinate] = None,
                 sub_area: Optional[str] = None) -> "ResolutionResult":
        return cls(postal_code=value.value, coordinate=coordinate, sub_area=sub_area)

    @property
    def is_sentinel(self) -> bool:
        return self.postal_code in Sentinel.__members__

    @property
    def is_success(self) -> bool:
        return not self.is_sentinel

    @property
    def coords(self) -> str:
        """Coordinate as "lat, lon", or empty string."""
        return str(self.coordinate) if self.coordinate is not None else ""


@dataclass(frozen=True)
class BatchResult:
    """A resolution tied to its input position."""
    index: int
    record: AddressRecord
    result: ResolutionResult


@dataclass
class BatchSummary:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: bool = False
    by_code: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_results(cls, results: list[BatchResult], cancelled: bool = False) -> "BatchSummary":
        processed = [r for r in results if r.result.postal_code != Sentinel.SIN_PROCESAR]
        succeeded = sum(1 for r in processed if r.result.is_success)
        counts = Counter(r.result.postal_code for r in results if r.result.is_sentinel)
        return cls(
            processed=len(processed),
            succeeded=succeeded,
            failed=len(processed) - succeeded,
            cancelled=cancelled,
            by_code=dict(counts),
        )


@dataclass
class BatchOutcome:
    """Everything a batch run returns: one result per input, in input order."""
    results: list[BatchResult]
    summary: BatchSummary

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self):
        return iter(self.results)
