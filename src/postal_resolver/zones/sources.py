"""Ingestion helpers: build zones and municipal index entries from raw data.

Zone files (shapefiles, GeoJSON, ...) come in with inconsistent attribute
names, so every field is looked up through a list of known aliases.
"""
from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping, Sequence

import geopandas as gpd
import pandas as pd
from pydantic import ValidationError
from shapely.geometry import mapping

from ..geocoding.normalizers import normalize_admin_code, normalize_text
from ..utils.errors import DataValidationError
from .zone import AreaType, MunicipalIndexEntry, PostalCodeEntry, PostalZone

logger = logging.getLogger(__name__)

UNKNOWN_POSTAL_CODE = "000000"
UNKNOWN_MUNICIPALITY = "Desconocido"

POSTAL_CODE_KEYS = ['CODIGO_POS', 'CODIGO_POSTAL', 'COD_POSTAL', 'POSTAL_CODE', 'ZONA_POSTAL', 'CP', 'COD_POS', 'CODIGO', 'ZONA']
ADMIN_CODE_KEYS = ['MPIO_CDGO', 'MPIO_CCNCT', 'COD_MPIO', 'CODIGO_MUNICIPIO', 'DANE_MPIO', 'DANE', 'MPIO_CCDGO', 'MPIO_COD', 'COD_MUN', 'MUN_COD']
MUNICIPALITY_KEYS = ['MPIO_CNMBR', 'NOM_MPIO', 'NOMBRE_MUNICIPIO', 'MUNICIPIO', 'NOM_MUNICIPIO', 'NOMBRE', 'MPIO_NJ', 'MPIO_CNM', 'MPI_CNMBR', 'MUN_CNMBR', 'MUNICIPIO_NOMBRE', 'MPIO_NOMBRE']
SUB_AREA_KEYS = ['LOCALIDAD', 'LOC_CNMBR', 'NOM_LOC', 'LOCALIDAD_NOMBRE', 'NOMBRE_LOCALIDAD', 'LOCALIDAD_NOM']
DEPARTMENT_CODE_KEYS = ['DPTO_CCDGO', 'COD_DPTO', 'CODIGO_DEPARTAMENTO', 'COD_DEPTO', 'DEPTO_COD', 'DPTO_COD']
DEPARTMENT_KEYS = ['DPTO_CNMBR', 'NOM_DPTO', 'NOMBRE_DEPARTAMENTO', 'DEPARTAMENTO', 'NOM_DEPTO', 'DPTO_CNM', 'DEP_CNMBR', 'DEPARTAMENTO_NOMBRE', 'DPTO_NOMBRE']

# Master table (authoritative names per postal code)
MASTER_POSTAL_KEYS = ['codigo_postal', 'postal_code', 'cp', 'código postal', 'zona_postal']
MASTER_MUNICIPALITY_KEYS = ['municipio', 'nombre_municipio', 'ciudad', 'nombre_ciudad']
MASTER_DEPARTMENT_KEYS = ['departamento', 'nombre_departamento']
MASTER_ADMIN_KEYS = ['codigo_municipio', 'cod_municipio', 'dane_municipio', 'código dane municipio', 'dane']
MASTER_SUB_AREA_KEYS = ['localidad', 'nombre_localidad', 'ciudad_distrito']


def _present(value: Any) -> bool:
    if value is None:
        return False
    try:
        return not pd.isna(value)
    except (TypeError, ValueError):
        return True


def find_attribute(props: Mapping[str, Any] | None, candidates: Sequence[str]) -> str:
    """First non-null value among ``candidates`` (exact key, then case-insensitive)."""
    if not props:
        return ''
    lowered = {str(k).lower(): k for k in props}
    for candidate in candidates:
        if candidate in props and _present(props[candidate]):
            return str(props[candidate]).strip()
        key = lowered.get(candidate.lower())
        if key is not None and _present(props[key]):
            return str(props[key]).strip()
    return ''


def _clean_code(value: str) -> str:
    # Spreadsheet exports turn codes into floats ("76001.0")
    return re.sub(r"\.0+$", "", value) if value else value


def zones_from_features(features: Iterable[Mapping[str, Any]], source: str = "features") -> list[PostalZone]:
    """Build PostalZones from GeoJSON-like features.

    Features without a postal code get ``000000``; features without a
    municipality name get ``Desconocido``. bbox and centroid are computed
    on construction.

    Raises:
        DataValidationError: one or more features failed model validation
    """
    zones: list[PostalZone] = []
    errors: list[dict[str, Any]] = []

    for i, feature in enumerate(features):
        props = feature.get('properties') or {}
        try:
            zones.append(PostalZone(
                id=f'feat-{i}',
                postal_code=_clean_code(find_attribute(props, POSTAL_CODE_KEYS)) or UNKNOWN_POSTAL_CODE,
                admin_code=_clean_code(find_attribute(props, ADMIN_CODE_KEYS)),
                municipality=find_attribute(props, MUNICIPALITY_KEYS) or UNKNOWN_MUNICIPALITY,
                department_code=_clean_code(find_attribute(props, DEPARTMENT_CODE_KEYS)),
                department=find_attribute(props, DEPARTMENT_KEYS),
                sub_area=find_attribute(props, SUB_AREA_KEYS) or None,
                geometry=feature.get('geometry'),
            ))
        except ValidationError as e:
            for err in e.errors():
                errors.append({**err, 'loc': (i, *err.get('loc', ()))})

    if errors:
        logger.error(f"Zone validation failed for {len(errors)} fields from '{source}'")
        raise DataValidationError(source, errors)

    logger.info(f"Built {len(zones)} postal zones from '{source}'")
    return zones


def zones_from_geodataframe(gdf: gpd.GeoDataFrame, source: str = "geodataframe") -> list[PostalZone]:
    """Build PostalZones from a GeoDataFrame (reprojected to EPSG:4326)."""
    if gdf.crs is not None and gdf.crs != 'EPSG:4326':
        gdf = gdf.to_crs('EPSG:4326')

    geom_col = gdf.geometry.name
    features = []
    for row in gdf.to_dict(orient='records'):
        geom = row.pop(geom_col, None)
        features.append({
            'properties': row,
            'geometry': mapping(geom) if geom is not None else None,
        })
    return zones_from_features(features, source=source)


def _area_type(raw: str) -> AreaType:
    norm = normalize_text(raw)
    if 'urb' in norm:
        return AreaType.URBAN
    if 'rur' in norm:
        return AreaType.RURAL
    return AreaType.UNKNOWN


def municipal_entries_from_frame(df: pd.DataFrame) -> list[MunicipalIndexEntry]:
    """Aggregate postal-code rows into one MunicipalIndexEntry per admin code.

    Expected columns (case-insensitive): codigo_municipio, codigo_postal,
    nombre_municipio, nombre_departamento, tipo. Rows without a usable admin
    code or postal code are skipped. Five-digit postal codes get a trailing
    zero. The first code seen is preferred until an urban one shows up.
    """
    by_admin: dict[str, MunicipalIndexEntry] = {}

    for row in df.to_dict(orient='records'):
        raw_admin = re.sub(r'[.,]', '', _clean_code(find_attribute(row, ['codigo_municipio'])))
        admin = normalize_admin_code(raw_admin) or '00000'
        if admin == '00000':
            continue

        cp = re.sub(r'\D', '', _clean_code(find_attribute(row, ['codigo_postal'])))
        if len(cp) == 5:
            cp += '0'
        if not cp:
            continue

        municipality = find_attribute(row, ['nombre_municipio'])
        department = find_attribute(row, ['nombre_departamento'])
        area_type = _area_type(find_attribute(row, ['tipo']))

        entry = by_admin.get(admin)
        if entry is None:
            entry = MunicipalIndexEntry(admin_code=admin, preferred_postal_code=cp)
            by_admin[admin] = entry
        entry.municipality = municipality or entry.municipality
        entry.department = department or entry.department
        entry.entries.append(PostalCodeEntry(postal_code=cp, area_type=area_type))
        if area_type == AreaType.URBAN:
            entry.preferred_postal_code = cp

    logger.info(f"Aggregated {len(df)} rows into {len(by_admin)} municipal index entries")
    return list(by_admin.values())


def apply_master_table(zones: Iterable[PostalZone], rows: Iterable[Mapping[str, Any]]) -> tuple[list[PostalZone], int]:
    """Overwrite zone names with authoritative values from a master table.

    Rows are matched to zones by postal code. Municipality, department and
    sub-area names are replaced when the master row has them; the admin
    code is only filled in when the zone has none.

    Returns:
        (updated zone list, number of zones changed)
    """
    lookup: dict[str, dict[str, str]] = {}
    for row in rows:
        cp = _clean_code(find_attribute(row, MASTER_POSTAL_KEYS))
        if cp:
            lookup[normalize_text(cp)] = {
                'municipality': find_attribute(row, MASTER_MUNICIPALITY_KEYS),
                'department': find_attribute(row, MASTER_DEPARTMENT_KEYS),
                'admin_code': _clean_code(find_attribute(row, MASTER_ADMIN_KEYS)),
                'sub_area': find_attribute(row, MASTER_SUB_AREA_KEYS),
            }

    result: list[PostalZone] = []
    updated = 0
    for zone in zones:
        info = lookup.get(normalize_text(zone.postal_code))
        if not info:
            result.append(zone)
            continue

        changes: dict[str, Any] = {}
        if info['municipality']:
            changes['municipality'] = info['municipality']
        if info['department']:
            changes['department'] = info['department']
        if info['admin_code'] and not zone.admin_code:
            changes['admin_code'] = info['admin_code']
        if info['sub_area']:
            changes['sub_area'] = info['sub_area']

        if changes:
            zone = zone.model_copy(update=changes)
            updated += 1
        result.append(zone)

    logger.info(f"Master table updated {updated} of {len(result)} zones")
    return result, updated
