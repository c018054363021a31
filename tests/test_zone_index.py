import pytest

from conftest import make_zone

from postal_resolver.zones import AreaType, MunicipalIndex, MunicipalIndexEntry, PostalCodeEntry, ZoneIndex


@pytest.fixture
def index(cali_zones):
    medellin = make_zone("050001", lon=-75.57, lat=6.25, municipality="Medellín",
                         admin_code="5001", department="Antioquia")
    bogota = make_zone("110111", lon=-74.07, lat=4.61, municipality="Bogotá, D.C.",
                       admin_code="11001", department="Bogotá D.C.", sub_area="Chapinero")
    return ZoneIndex(cali_zones + [medellin, bogota])


def test_maps_are_built_on_load(index):
    assert len(index) == 4
    assert {z.postal_code for z in index.by_admin_code("76001")} == {"760212", "760001"}
    # short codes are zero-padded on both sides
    assert [z.postal_code for z in index.by_admin_code("05001")] == ["050001"]
    assert [z.postal_code for z in index.by_city("MEDELLIN")] == ["050001"]
    assert [z.postal_code for z in index.by_city("Bogota")] == ["110111"]
    assert index.by_postal_code("760212").sub_area == "Comuna 2"
    assert index.by_postal_code("999999") is None


def test_load_replaces_previous_zones(index):
    index.load([make_zone("080001", lon=-74.8, lat=10.96, municipality="Barranquilla",
                          admin_code="08001", department="Atlántico")])

    assert len(index) == 1
    assert index.by_admin_code("76001") == []
    assert index.by_city("Cali") == []

    index.clear()
    assert len(index) == 0


def test_fuzzy_admin_code_tiers(index):
    # trailing five digits after zero-padding
    assert {z.postal_code for z in index.by_admin_code_fuzzy("1176001")} == {"760212", "760001"}
    assert [z.postal_code for z in index.by_admin_code_fuzzy("5001")] == ["050001"]
    # leading five digits of an over-long code
    assert {z.postal_code for z in index.by_admin_code_fuzzy("76001999")} == {"760212", "760001"}
    assert index.by_admin_code_fuzzy("") == []
    assert index.by_admin_code_fuzzy("99999") == []


@pytest.mark.parametrize("code", ["1", "6001", "760", "0", "00000"])
def test_fuzzy_admin_code_rejects_partial_codes(index, code):
    assert index.by_admin_code_fuzzy(code) == []


def test_zones_without_admin_code_are_not_matched_by_code(cali_zones):
    orphan = make_zone("999001", lon=-70.0, lat=5.0, municipality="Sin código", admin_code="")
    index = ZoneIndex(cali_zones + [orphan])

    assert index.by_admin_code("0") == []
    assert index.by_admin_code_fuzzy("000") == []
    assert [z.postal_code for z in index.by_city("Sin código")] == ["999001"]


def test_by_department_is_accent_insensitive(index):
    assert [z.postal_code for z in index.by_department("antioquia")] == ["050001"]
    assert len(index.by_department("VALLE DEL CAUCA")) == 2
    assert index.by_department(None) == []


def test_containing_respects_candidates(index, cali_zones):
    assert index.containing(-76.5197, 3.4372).postal_code == "760212"
    assert index.containing(-76.5197, 3.4372, candidates=cali_zones[1:]) is None
    assert index.containing(0.0, 0.0) is None


def test_search_sorts_numerically_and_clamps_pages(index):
    first = index.search(page=1, limit=2)
    assert [z.postal_code for z in first.items] == ["050001", "110111"]
    assert first.total == 4
    assert first.total_pages == 2

    clamped = index.search(page=99, limit=2)
    assert clamped.page == 2
    assert [z.postal_code for z in clamped.items] == ["760001", "760212"]

    assert index.search(page=0, limit=2).page == 1


def test_search_filters_on_name_code_and_department(index):
    assert index.search("cali").total == 2
    assert index.search("medellín").total == 1
    assert index.search("antioquia").total == 1
    assert index.search("7602").total == 1

    empty = index.search("atlantis")
    assert empty.items == []
    assert empty.total_pages == 0
    assert empty.page == 1


def test_search_rejects_non_positive_limit(index):
    with pytest.raises(ValueError):
        index.search(limit=0)


def test_municipal_index_upsert_replaces_per_admin_code():
    idx = MunicipalIndex([
        MunicipalIndexEntry(admin_code="76001", municipality="Cali", preferred_postal_code="760001"),
        MunicipalIndexEntry(admin_code="5001", municipality="Medellín", preferred_postal_code="050001"),
        MunicipalIndexEntry(admin_code="", municipality="Sin código"),
        MunicipalIndexEntry(admin_code="00000", municipality="Desconocido"),
    ])
    assert len(idx) == 2

    count = idx.upsert([MunicipalIndexEntry(
        admin_code="76001",
        municipality="Santiago de Cali",
        entries=[PostalCodeEntry(postal_code="760500", area_type=AreaType.RURAL)],
    )])

    assert count == 1
    assert len(idx) == 2
    cali = idx.get("76001")
    assert cali.preferred_postal_code is None
    assert cali.entry_for(AreaType.RURAL).postal_code == "760500"
    assert cali.entry_for(AreaType.URBAN) is None
    assert idx.get("05001").preferred_postal_code == "050001"
    assert idx.by_city_name("SANTIAGO DE CALI").admin_code == "76001"
    assert idx.by_city_name("Atlantis") is None

    idx.clear()
    assert len(idx) == 0
    assert idx.get("76001") is None
