import pytest

from postal_resolver.geocoding.normalizers import (
    AddressNormalizer,
    extract_street,
    is_capital,
    normalize_admin_code,
    normalize_city_key,
    normalize_text,
    strip_extraneous_parts,
)


@pytest.fixture
def normalizer():
    return AddressNormalizer()


@pytest.mark.parametrize("raw, expected", [
    ("Calle 59C 2C-76", "Calle 59C # 2C-76"),
    ("Cll 10 No. 5-20", "Calle 10 # 5-20"),
    ("Kra 45 # 10 20 Apto 301", "Carrera 45 # 10-20"),
    ("AV 68 # 13-50", "Avenida 68 # 13-50"),
    ("Cra 7 # 45 - 10 juan@mail.com", "Carrera 7 # 45-10"),
    ("Dg 20 Sur 15 30", "Diagonal 20 Sur # 15-30"),
    ("Tv 5 Nro 8-12 Torre 2 (porteria)", "Transversal 5 # 8-12"),
    ("K 50 # 20-10", "Carrera 50 # 20-10"),
])
def test_normalize_examples(normalizer, raw, expected):
    assert normalizer.normalize(raw) == expected


@pytest.mark.parametrize("raw", [
    "Calle 59C 2C-76",
    "Cll 10 No. 5-20",
    "Kra 45 # 10 20 Apto 301",
    "Dg 20 Sur 15 30",
    "Avenida Calle 26 # 68-90 Oficina 201",
    "Vereda El Placer Km 5",
    "Ac 100 19 61",
])
def test_normalize_is_idempotent(normalizer, raw):
    once = normalizer.normalize(raw)
    assert normalizer.normalize(once) == once


def test_blank_input_normalizes_to_empty(normalizer):
    assert normalizer.normalize("") == ""
    assert normalizer.normalize("   ") == ""
    assert normalizer.normalize("Cl 1 # 2-3") == "Calle 1 # 2-3"


def test_strip_extraneous_parts_cuts_at_comma_and_noise():
    assert strip_extraneous_parts("Calle 10 # 5-20, Barrio Centro", "Cali") == "Calle 10 # 5-20"
    assert strip_extraneous_parts("Carrera 7 # 45-10 frente al parque", "Cali") == "Carrera 7 # 45-10"
    assert strip_extraneous_parts("Carrera 7 # 45-10 - esquina", "Cali") == "Carrera 7 # 45-10"


def test_strip_extraneous_parts_drops_conflicting_city():
    assert strip_extraneous_parts("Calle 5 # 10-20 Medellín", "Cali") == "Calle 5 # 10-20"
    # the supplied city itself is kept
    assert strip_extraneous_parts("Calle 5 # 10-20 Cali", "Cali") == "Calle 5 # 10-20 Cali"


def test_extract_street():
    assert extract_street("Calle 59C # 2C-76") == "Calle 59C"
    assert extract_street("Avenida Carrera 30 # 45-10") == "Avenida Carrera 30"
    assert extract_street("Sin nomenclatura") == "Sin nomenclatura"


@pytest.mark.parametrize("raw, expected", [
    ("Bogotá, D.C.", "bogota"),
    ("BOGOTA DISTRITO CAPITAL", "bogota"),
    ("Municipio de Chía", "chia"),
    ("Cali (Valle)", "cali"),
    ("  Santiago   de Cali ", "santiago de cali"),
    ("Ciudad de Medellín, Colombia", "medellin"),
    ("", ""),
    (None, ""),
])
def test_normalize_city_key(raw, expected):
    assert normalize_city_key(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("76001", "76001"),
    ("5001", "05001"),
    ("76.001", "76001"),
    ("1176001", "76001"),
    ("abc", ""),
    (None, ""),
])
def test_normalize_admin_code(raw, expected):
    assert normalize_admin_code(raw) == expected


def test_normalize_text_and_capital_detection():
    assert normalize_text("  Bogotá ") == "bogota"
    assert is_capital("BOGOTÁ D.C.")
    assert not is_capital("Medellín")
