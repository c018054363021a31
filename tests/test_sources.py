import geopandas as gpd
import pandas as pd
import pytest
from shapely.geometry import box

from conftest import make_zone, square

from postal_resolver.utils.errors import DataValidationError
from postal_resolver.zones import AreaType, sources


def test_find_attribute_uses_aliases_and_skips_missing():
    props = {"codigo_postal": float("nan"), "CP": "760212", "mpio_cnmbr": " Cali "}

    assert sources.find_attribute(props, sources.POSTAL_CODE_KEYS) == "760212"
    assert sources.find_attribute(props, sources.MUNICIPALITY_KEYS) == "Cali"
    assert sources.find_attribute(props, sources.SUB_AREA_KEYS) == ""
    assert sources.find_attribute(None, sources.SUB_AREA_KEYS) == ""


def test_zones_from_features_maps_aliases_and_defaults():
    features = [
        {
            "properties": {"CODIGO_POS": "760212.0", "MPIO_CCNCT": "76001", "MPIO_CNMBR": "Cali",
                           "DPTO_CNMBR": "Valle del Cauca", "LOCALIDAD": "Comuna 2"},
            "geometry": square(-76.5197, 3.4372),
        },
        {"properties": {}, "geometry": square(-74.0, 4.6)},
    ]

    first, second = sources.zones_from_features(features, source="test.geojson")

    assert first.id == "feat-0"
    assert first.postal_code == "760212"
    assert first.admin_code == "76001"
    assert first.municipality == "Cali"
    assert first.department == "Valle del Cauca"
    assert first.sub_area == "Comuna 2"
    assert first.contains(-76.5197, 3.4372)

    assert second.postal_code == sources.UNKNOWN_POSTAL_CODE
    assert second.municipality == sources.UNKNOWN_MUNICIPALITY
    assert second.sub_area is None


def test_zones_from_features_collects_validation_errors():
    features = [
        {"properties": {"CP": "1"}, "geometry": square(0, 0)},
        {"properties": {"CP": "2"}, "geometry": None},
        {"properties": {"CP": "3"}, "geometry": "POLYGON"},
    ]

    with pytest.raises(DataValidationError) as excinfo:
        sources.zones_from_features(features, source="broken.geojson")

    err = excinfo.value
    assert err.source == "broken.geojson"
    assert {e["loc"][0] for e in err.errors} == {1, 2}
    assert "geometry" in err.summary()


def test_zones_from_geodataframe_reprojects_to_wgs84():
    gdf = gpd.GeoDataFrame(
        {"CODIGO_POSTAL": ["760212"], "NOM_MPIO": ["Cali"]},
        geometry=[box(-76.53, 3.43, -76.51, 3.45)],
        crs="EPSG:4326",
    ).to_crs("EPSG:3857")

    [zone] = sources.zones_from_geodataframe(gdf)

    assert zone.postal_code == "760212"
    assert zone.municipality == "Cali"
    assert zone.contains(-76.52, 3.44)
    assert round(zone.bbox[0], 4) == -76.53


def test_municipal_entries_from_frame_aggregates_per_admin_code():
    df = pd.DataFrame([
        {"codigo_municipio": "76001", "codigo_postal": "760500", "nombre_municipio": "Cali",
         "nombre_departamento": "Valle del Cauca", "tipo": "Rural"},
        {"codigo_municipio": "76.001", "codigo_postal": "760001", "nombre_municipio": "Cali",
         "nombre_departamento": "Valle del Cauca", "tipo": "Urbano"},
        {"codigo_municipio": "5001.0", "codigo_postal": "50001", "nombre_municipio": "Medellín",
         "nombre_departamento": "Antioquia", "tipo": ""},
        {"codigo_municipio": None, "codigo_postal": "110111", "nombre_municipio": "Sin código",
         "nombre_departamento": "", "tipo": "Urbano"},
        {"codigo_municipio": "8001", "codigo_postal": None, "nombre_municipio": "Barranquilla",
         "nombre_departamento": "Atlántico", "tipo": "Urbano"},
    ])

    entries = {e.admin_code: e for e in sources.municipal_entries_from_frame(df)}

    assert set(entries) == {"76001", "05001"}
    cali = entries["76001"]
    assert cali.preferred_postal_code == "760001"
    assert [(e.postal_code, e.area_type) for e in cali.entries] == [
        ("760500", AreaType.RURAL), ("760001", AreaType.URBAN),
    ]
    medellin = entries["05001"]
    # five-digit codes are padded with a trailing zero
    assert medellin.preferred_postal_code == "500010"
    assert medellin.entries[0].area_type == AreaType.UNKNOWN
    assert medellin.department == "Antioquia"


def test_apply_master_table_overwrites_names():
    zones = [
        make_zone("760212", lon=-76.5197, lat=3.4372, municipality="CALI", admin_code=""),
        make_zone("760001", lon=-76.53, lat=3.45),
    ]
    rows = [
        {"codigo_postal": "760212", "municipio": "Santiago de Cali", "departamento": "Valle del Cauca",
         "codigo_municipio": "76001.0", "localidad": "Comuna 2"},
        {"codigo_postal": "999999", "municipio": "Nowhere"},
    ]

    updated_zones, updated = sources.apply_master_table(zones, rows)

    assert updated == 1
    first, second = updated_zones
    assert first.municipality == "Santiago de Cali"
    assert first.admin_code == "76001"
    assert first.sub_area == "Comuna 2"
    assert second is zones[1]
    # originals are untouched
    assert zones[0].municipality == "CALI"
