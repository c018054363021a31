from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, Field

from . import geometry as geo


class PostalZone(BaseModel):
    """A polygonal area mapped to exactly one postal code."""

    id: str
    postal_code: str
    admin_code: str = ""
    municipality: str = ""
    department_code: str = ""
    department: str = ""
    sub_area: Optional[str] = None
    geometry: dict[str, Any]

    # Derived & Cacheable
    bbox: Optional[tuple[float, float, float, float]] = None
    center_lat: Optional[float] = None
    center_lon: Optional[float] = None

    def model_post_init(self, __context):
        # Only compute if missing so persisted zones can carry their own values
        if self.bbox is None:
            self.bbox = geo.bbox(self.geometry)
        if self.center_lat is None or self.center_lon is None:
            self.center_lat, self.center_lon = geo.centroid(self.geometry)

    @property
    def center(self) -> tuple[float, float]:
        return (self.center_lat, self.center_lon)

    def contains(self, lon: float, lat: float) -> bool:
        return geo.contains(lon, lat, self)


class AreaType(StrEnum):
    URBAN = "urban"
    RURAL = "rural"
    UNKNOWN = "unknown"


class PostalCodeEntry(BaseModel):
    postal_code: str
    area_type: AreaType = AreaType.UNKNOWN


class MunicipalIndexEntry(BaseModel):
    """Reference list of postal codes for one municipality."""

    admin_code: str
    municipality: str = ""
    department: str = ""
    entries: list[PostalCodeEntry] = Field(default_factory=list)
    preferred_postal_code: Optional[str] = None

    def entry_for(self, area_type: AreaType) -> Optional[PostalCodeEntry]:
        return next((e for e in self.entries if e.area_type == area_type), None)
