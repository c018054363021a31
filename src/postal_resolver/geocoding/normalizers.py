"""
Address, city and administrative-code normalizers.

Provides implementations for cleaning and standardizing Colombian street
addresses and municipality names before geocoding and index lookups.
"""

import re
import unicodedata
from typing import Optional, Dict, Mapping, Tuple

from .base import Normalizer

ADMIN_CODE_WIDTH = 5
CAPITAL_CITY_KEY = "bogota"
CAPITAL_CITY_NAME = "Bogotá"
CAPITAL_DEPARTMENT_NAME = "Bogotá D.C."

# Street-type abbreviations → full words. Longer forms first so that
# "avda" is not shadowed by "av".
_STREET_ABBREVS: Tuple[Tuple[str, str], ...] = (
    ("ac", "Avenida Calle"),
    ("ak", "Avenida Carrera"),
    ("cll", "Calle"),
    ("cl", "Calle"),
    ("cra", "Carrera"),
    ("kra", "Carrera"),
    ("kr", "Carrera"),
    ("diag", "Diagonal"),
    ("dg", "Diagonal"),
    ("trans", "Transversal"),
    ("tv", "Transversal"),
    ("avda", "Avenida"),
    ("av", "Avenida"),
    ("circ", "Circular"),
    ("cir", "Circular"),
    ("autop", "Autopista"),
)

# Single-letter forms collide with street-number suffixes ("59 C"), so they
# only expand as the leading token.
_LEADING_ABBREVS: Mapping[str, str] = {
    "c": "Calle",
    "k": "Carrera",
    "tr": "Transversal",
}

STREET_TYPES = (
    "Avenida Calle", "Avenida Carrera", "Calle", "Carrera", "Diagonal",
    "Transversal", "Avenida", "Circular", "Autopista",
)
_STREET_TYPES_RE = "|".join(STREET_TYPES)

# Unit/floor/tower/block/neighbourhood words: everything after them is noise
# for a point geocode.
_STOP_WORDS = (
    "ap", "apt", "apto", "apartamento", "int", "interior", "casa", "cs", "local",
    "oficina", "of", "piso", "torre", "manzana", "mz", "bloque", "bl",
    "barrio", "br", "urb", "urbanizacion", "urbanización", "conjunto", "etapa",
    "hotel", "edificio", "agrupacion", "agrupación", "zona", "vereda", "km",
    "kilometro", "kilómetro", "via", "vía", "centro comercial", "cc", "mall",
    "plaza", "ph",
)

_RE_EMAIL = re.compile(r"\b[\w.-]+@[\w.-]+\.\w{2,4}\b", re.I)
_RE_PARENS = re.compile(r"\(.*?\)")
_RE_STOP = re.compile(r"\b(?:" + "|".join(re.escape(w) for w in _STOP_WORDS) + r")\b", re.I)
_RE_NUMBER_WORD = re.compile(r"\b(?:no|num|n[uú]mero|nro)\b\s*(?=\d)", re.I)
_RE_HYPHEN = re.compile(r"\s*-\s*")
_RE_MISSING_SEP = re.compile(
    rf"^({_STREET_TYPES_RE})\s+"
    r"([0-9]+[a-z]?\s?(?:bis)?\s?[a-z]?\s?(?:sur|norte|este|oeste)?)\s+"
    r"([0-9]+.*)$",
    re.I,
)
_RE_PLATE = re.compile(r"#\s*([0-9]+[a-z]?)\s+([0-9]+[a-z]?)\b", re.I)
_RE_STREET_ONLY = re.compile(rf"^(?:{_STREET_TYPES_RE})\s+[^,#]+", re.I)

# Extraneous-part truncation for the final query
_NOISE_KEYWORDS = (
    "piso", "apto", "apartamento", "interior", "barrio", "casa",
    "frente al parque", "frente", "esquina",
)
_RE_NOISE = re.compile(r"\b(?:" + "|".join(re.escape(k) for k in _NOISE_KEYWORDS) + r")\b", re.I)
_RE_HYPHEN_NOISE = re.compile(r"\s-\s*(?:" + "|".join(_NOISE_KEYWORDS) + r")", re.I)

# City names that frequently leak into address text from other columns
CONFLICTING_CITIES = (
    "corinto", "cauca", "medellin", "barranquilla", "cartagena", "cali",
    "soacha", "envigado", "itagui", "yopal", "duitama",
)

# Municipality qualifiers stripped from city keys
_CITY_QUALIFIERS = (
    r"\bciudad\s+de\b",
    r"\bmunicipio\s+de\b",
    r"\bd\s*c\b",
    r"\bdistrito\s+capital\b",
    r"\bcolombia\b",
)


def strip_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def normalize_text(value: Optional[str]) -> str:
    """Strip diacritics, lower-case and trim."""
    if not value:
        return ""
    return strip_accents(str(value)).lower().strip()


def normalize_city_key(raw: Optional[str]) -> str:
    """
    Canonical lookup key for a municipality name.

    Removes parenthetical content, diacritics and case, administrative
    qualifiers ("ciudad de", "municipio de", "D.C.", "distrito capital"),
    and collapses whitespace. Any variant containing the capital-city token
    collapses to exactly "bogota".

    Examples:
        normalize_city_key("Bogotá, D.C.")        → "bogota"
        normalize_city_key("Municipio de Chía")   → "chia"
        normalize_city_key("Cali (Valle)")        → "cali"
    """
    if not raw:
        return ""
    s = _RE_PARENS.sub("", str(raw))
    s = normalize_text(s)
    s = re.sub(r"[.,]", " ", s)
    for pattern in _CITY_QUALIFIERS:
        s = re.sub(pattern, "", s)
    s = re.sub(r"\s+", " ", s).strip()
    if CAPITAL_CITY_KEY in s:
        return CAPITAL_CITY_KEY
    return s


def normalize_admin_code(raw: Optional[str], width: int = ADMIN_CODE_WIDTH) -> str:
    """
    Fixed-width, zero-padded numeric admin code.

    Non-digits are dropped; longer codes keep their trailing digits. Returns
    an empty string when the input has no digits at all.
    """
    if raw is None:
        return ""
    digits = re.sub(r"\D", "", str(raw))
    if not digits:
        return ""
    return digits.zfill(width)[-width:]


def admin_code_digits(raw: Optional[str]) -> str:
    """Digits of an admin code without padding or truncation."""
    return re.sub(r"\D", "", str(raw or ""))


def is_capital(city: Optional[str]) -> bool:
    return CAPITAL_CITY_KEY in normalize_text(city)


class AddressNormalizer(Normalizer):
    """
    Normalizes free-text Colombian addresses for geocoding.

    Handles:
    - Email-like substrings and parenthetical notes (removed)
    - Street-type abbreviations (Cll → Calle, Kra → Carrera, Dg → Diagonal, ...)
    - Unit/floor/tower/neighbourhood noise (truncated from the first stop word)
    - House-number markers (No., Nro, Número → #)
    - Hyphenated ranges ("20 - 30" → "20-30")
    - Missing "#" between the street number and the house plate

    The transformation is idempotent: normalize(normalize(x)) == normalize(x).
    """

    def normalize(self, value: str, context: Optional[str] = None) -> str:
        """
        Normalize a single address.

        Args:
            value: Raw address text
            context: Unused (kept for interface compatibility)

        Returns:
            Normalized address, or "" for blank input
        """
        if not value or not str(value).strip():
            return ""

        t = str(value).strip()
        t = _RE_EMAIL.sub("", t)

        # Standardize separators
        t = t.replace(".", " ")
        t = _RE_PARENS.sub("", t)
        t = re.sub(r"\s+", " ", t).strip()

        t = self._expand_abbreviations(t)
        t = self._truncate_at_stop_word(t)

        # Number markers
        t = _RE_NUMBER_WORD.sub(" # ", t)
        t = t.replace("#", " # ")
        t = _RE_HYPHEN.sub("-", t)
        t = re.sub(r"\s+", " ", t).strip()

        if "#" not in t:
            t = _RE_MISSING_SEP.sub(r"\1 \2 # \3", t)

        # "# 45 67" → "# 45-67"
        t = _RE_PLATE.sub(r"# \1-\2", t)

        return re.sub(r"\s+", " ", t).strip()

    def _expand_abbreviations(self, text: str) -> str:
        """Expand street-type abbreviations that precede a number or lead the address."""
        t = text
        for abbrev, full in _STREET_ABBREVS:
            t = re.sub(rf"^{abbrev}\b", full, t, flags=re.I)
            t = re.sub(rf"\b{abbrev}\s*(?=\d)", f"{full} ", t, flags=re.I)

        first, _, rest = t.partition(" ")
        full = _LEADING_ABBREVS.get(first.lower())
        if full and rest and rest[0].isdigit():
            t = f"{full} {rest}"
        return t

    def _truncate_at_stop_word(self, text: str) -> str:
        """Drop everything from the first stop word that is not the leading token."""
        for match in _RE_STOP.finditer(text):
            if match.start() > 0:
                return text[:match.start()].strip(" -,")
        return text


def strip_extraneous_parts(address: str, city: str) -> str:
    """
    Reduce an address to its primary part for the final query.

    Truncates at the first comma or at noise keywords (floor, apartment,
    "in front of", corner), and removes embedded city-name tokens that
    conflict with the supplied city.
    """
    s = address or ""
    if "," in s:
        s = s.split(",")[0]

    hyphen_noise = _RE_HYPHEN_NOISE.search(s)
    if hyphen_noise:
        s = s[:hyphen_noise.start()]

    noise = _RE_NOISE.search(s)
    if noise:
        s = s[:noise.start()]

    city_norm = normalize_text(city)
    for conflict in CONFLICTING_CITIES:
        if conflict not in city_norm and conflict in normalize_text(s):
            s = re.sub(rf"\b{_accent_pattern(conflict)}\b", "", s, flags=re.I)
            s = re.sub(r"\s\s+", " ", s)
    return s.strip(" -")


def _accent_pattern(word: str) -> str:
    accents: Dict[str, str] = {"a": "[aá]", "e": "[eé]", "i": "[ií]", "o": "[oó]", "u": "[uú]"}
    return "".join(accents.get(ch, re.escape(ch)) for ch in word)


def extract_street(address: str) -> str:
    """Street part of a normalized address ("Calle 59C # 2C-76" → "Calle 59C")."""
    m = _RE_STREET_ONLY.match(address or "")
    return m.group(0).strip() if m else (address or "").strip()
