"""
Planar geometry helpers for postal zone polygons.

Geometries are GeoJSON-style mappings (``{"type": ..., "coordinates": ...}``)
with rings of ``[lon, lat]`` pairs. Containment only looks at the outer ring
of each polygon part: inner rings (holes) are not subtracted.
"""

from __future__ import annotations

from typing import Any, Iterator, Mapping, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from .zone import PostalZone

BBox = tuple[float, float, float, float]
Ring = Sequence[Sequence[float]]

# Geographic centre of Colombia, used when a geometry has no vertices.
DEFAULT_CENTER: tuple[float, float] = (4.5709, -74.2973)


def _polygon_parts(geometry: Mapping[str, Any] | None) -> list[Sequence[Ring]]:
    """Return the list of polygons (each a list of rings) in a geometry."""
    if not geometry:
        return []
    coords = geometry.get("coordinates") or []
    gtype = geometry.get("type")
    if gtype == "Polygon":
        return [coords]
    if gtype == "MultiPolygon":
        return list(coords)
    return []


def _iter_vertices(geometry: Mapping[str, Any] | None) -> Iterator[Sequence[float]]:
    for polygon in _polygon_parts(geometry):
        for ring in polygon:
            yield from ring


def bbox(geometry: Mapping[str, Any] | None) -> BBox:
    """
    Compute [min_lon, min_lat, max_lon, max_lat] over every ring of every part.

    Degenerate geometries (missing, empty, or of an unsupported type) yield
    an all-zero box.
    """
    min_lon = min_lat = float("inf")
    max_lon = max_lat = float("-inf")
    for vertex in _iter_vertices(geometry):
        lon, lat = float(vertex[0]), float(vertex[1])
        if lon < min_lon:
            min_lon = lon
        if lon > max_lon:
            max_lon = lon
        if lat < min_lat:
            min_lat = lat
        if lat > max_lat:
            max_lat = lat

    if min_lon == float("inf"):
        return (0.0, 0.0, 0.0, 0.0)
    return (min_lon, min_lat, max_lon, max_lat)


def in_bbox(lon: float, lat: float, box: BBox) -> bool:
    min_lon, min_lat, max_lon, max_lat = box
    return min_lon <= lon <= max_lon and min_lat <= lat <= max_lat


def point_in_polygon(point: tuple[float, float], ring: Ring) -> bool:
    """Even-odd ray casting test of a (lon, lat) point against a single ring."""
    x, y = point
    inside = False
    n = len(ring)
    j = n - 1
    for i in range(n):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def contains(lon: float, lat: float, zone: "PostalZone") -> bool:
    """
    Test whether a point lies inside a zone.

    Points outside the zone's precomputed bbox are rejected without touching
    the ring geometry. A MultiPolygon matches when the point falls inside the
    outer ring of any member polygon.
    """
    if zone.bbox is not None and not in_bbox(lon, lat, zone.bbox):
        return False

    for polygon in _polygon_parts(zone.geometry):
        if polygon and point_in_polygon((lon, lat), polygon[0]):
            return True
    return False


def centroid(geometry: Mapping[str, Any] | None) -> tuple[float, float]:
    """
    Coarse representative point as (lat, lon).

    Arithmetic mean of the first ring of the first polygon part. This is not
    an area centroid and can fall outside concave polygons; use it for map
    centring, never for containment.
    """
    parts = _polygon_parts(geometry)
    ring: Ring = parts[0][0] if parts and parts[0] else []
    if not ring:
        return DEFAULT_CENTER

    sum_lon = sum(float(p[0]) for p in ring)
    sum_lat = sum(float(p[1]) for p in ring)
    return (sum_lat / len(ring), sum_lon / len(ring))
