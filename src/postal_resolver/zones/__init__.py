"""Postal zones, the lookup indexes built over them, and their ingestion."""

from .zone import PostalZone, AreaType, PostalCodeEntry, MunicipalIndexEntry
from .zone_index import ZoneIndex, ZonePage
from .municipal_index import MunicipalIndex
from . import geometry, sources

__all__ = [
    'PostalZone',
    'AreaType',
    'PostalCodeEntry',
    'MunicipalIndexEntry',
    'ZoneIndex',
    'ZonePage',
    'MunicipalIndex',
    'geometry',
    'sources',
]
