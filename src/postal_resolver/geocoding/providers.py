"""
HTTP geocoding providers implementing the Geocoder interface.

- GoogleMapsGeocoder: Google Geocoding API with a Places fallback (primary, paid)
- NominatimGeocoder: OpenStreetMap Nominatim search/reverse (secondary, free)
- GeminiGeocoder: Gemini generateContent with search grounding (tertiary)

Providers never raise for network errors, timeouts or malformed payloads;
those come back as a ProviderResult status. Quota exhaustion is the one
exception and is raised as QuotaExhaustedError.

Reference:
    https://developers.google.com/maps/documentation/geocoding
    https://nominatim.org/release-docs/develop/api/Search/
    https://ai.google.dev/api/generate-content
"""

import json
import logging
import re
import threading
from typing import Optional, Any, Dict, Tuple

import requests

from ..utils.errors import QuotaExhaustedError
from .base import Geocoder, RateLimiter
from .models import GeocodeSource, GeocodeStatus, ProviderQuery, ProviderResult
from .normalizers import strip_extraneous_parts

logger = logging.getLogger(__name__)

# lon_west, lat_north, lon_east, lat_south
CAPITAL_VIEWBOX = "-74.25,4.85,-73.95,4.45"

_QUOTA_STATUSES = {"OVER_QUERY_LIMIT", "OVER_DAILY_LIMIT", "RESOURCE_EXHAUSTED"}

# Anything a bad response or an unexpected payload shape can raise while parsing
_SOFT_FAILURES = (requests.RequestException, ValueError, KeyError, TypeError, AttributeError, IndexError)


def build_session(user_agent: Optional[str] = None) -> requests.Session:
    """Persistent session with a pooled adapter large enough for batch workers."""
    session = requests.Session()
    if user_agent:
        session.headers.update({"User-Agent": user_agent})
    adapter = requests.adapters.HTTPAdapter(
        pool_connections=10,
        pool_maxsize=32,
        max_retries=0,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _parse_float(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _json_object(response: requests.Response) -> Dict[str, Any]:
    """Response body as a dict; empty or non-object bodies become {}."""
    payload = response.json() if response.content else {}
    return payload if isinstance(payload, dict) else {}


class _HttpGeocoder(Geocoder):
    """Shared plumbing: session, timeout and the optional rate limiter."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = 6.0,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.session = session or build_session()
        self.timeout = timeout
        self.rate_limiter = rate_limiter

    def _get(self, url: str, params: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> requests.Response:
        if self.rate_limiter:
            self.rate_limiter.wait()
        return self.session.get(url, params=params, headers=headers, timeout=self.timeout)

    def _miss(self, status: GeocodeStatus, message: Optional[str] = None) -> ProviderResult:
        return ProviderResult(provider=GeocodeSource(self.name), status=status, message=message)


class GoogleMapsGeocoder(_HttpGeocoder):
    """
    Google Maps geocoder.

    Queries the Geocoding API restricted to the country (and to the
    locality/administrative area when known). On ZERO_RESULTS, retries the
    same text against Places "find place from text".
    """

    name = "google"
    GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
    FIND_PLACE_URL = "https://maps.googleapis.com/maps/api/place/findplacefromtext/json"

    def __init__(
        self,
        api_key: Optional[str],
        enabled: bool = True,
        country_code: str = "co",
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.enabled = enabled
        self.country_code = country_code

    @property
    def configured(self) -> bool:
        return bool(self.enabled and self.api_key)

    def _components(self, query: ProviderQuery) -> str:
        parts = [f"country:{self.country_code.upper()}"]
        if query.city.strip():
            parts.append(f"locality:{query.city.strip()}")
        if query.department.strip():
            parts.append(f"administrative_area:{query.department.strip()}")
        return "|".join(parts)

    def _check_quota(self, response: requests.Response) -> Dict[str, Any]:
        if response.status_code == 429:
            raise QuotaExhaustedError(self.name, "http_429")
        payload = _json_object(response)
        status = payload.get("status")
        if status in _QUOTA_STATUSES:
            raise QuotaExhaustedError(self.name, payload.get("error_message") or status)
        return payload

    def geocode(self, query: ProviderQuery, cancel: Optional[threading.Event] = None) -> ProviderResult:
        if not self.configured:
            return self._miss(GeocodeStatus.NOT_CONFIGURED)

        try:
            response = self._get(self.GEOCODE_URL, {
                "address": query.text,
                "components": self._components(query),
                "region": self.country_code,
                "key": self.api_key,
            })
            payload = self._check_quota(response)
            if not response.ok:
                return self._miss(GeocodeStatus.API_ERROR, f"http_{response.status_code}")

            status = payload.get("status")
            if status == "OK" and payload.get("results"):
                loc = (payload["results"][0].get("geometry") or {}).get("location") or {}
                result = self._result(loc)
                if result:
                    return result
            elif status not in ("OK", "ZERO_RESULTS"):
                logger.warning(f"Google geocode returned {status}: {payload.get('error_message')}")
                return self._miss(GeocodeStatus.API_ERROR, status)

            if cancel is not None and cancel.is_set():
                return self._miss(GeocodeStatus.NOT_FOUND, "cancelled")
            return self._find_place(query)

        except QuotaExhaustedError:
            raise
        except _SOFT_FAILURES as e:
            logger.warning(f"Google geocode failed for '{query.text}': {e}")
            return self._miss(GeocodeStatus.EXCEPTION, str(e)[:500])

    def _find_place(self, query: ProviderQuery) -> ProviderResult:
        response = self._get(self.FIND_PLACE_URL, {
            "input": query.text,
            "inputtype": "textquery",
            "fields": "geometry",
            "region": self.country_code,
            "key": self.api_key,
        })
        payload = self._check_quota(response)
        if not response.ok:
            return self._miss(GeocodeStatus.API_ERROR, f"http_{response.status_code}")

        candidates = payload.get("candidates") or []
        if candidates:
            loc = (candidates[0].get("geometry") or {}).get("location") or {}
            result = self._result(loc)
            if result:
                return result
        return self._miss(GeocodeStatus.NOT_FOUND)

    def _result(self, loc: Dict[str, Any]) -> Optional[ProviderResult]:
        lat, lon = _parse_float(loc.get("lat")), _parse_float(loc.get("lng"))
        if lat is None or lon is None:
            return None
        result = ProviderResult(provider=GeocodeSource.GOOGLE, status=GeocodeStatus.OK, lat=lat, lon=lon)
        return result if result.is_success() else None


class NominatimGeocoder(_HttpGeocoder):
    """
    OpenStreetMap Nominatim geocoder.

    Uses a structured search (street/city/state/country) when the
    department is known and free text otherwise. Queries for the capital
    are bounded to its viewbox. The match ``importance`` is returned as the
    result confidence; the caller decides whether it is good enough.
    """

    name = "nominatim"

    def __init__(
        self,
        base_url: str = "https://nominatim.openstreetmap.org",
        user_agent: str = "PostalResolver/1.0 (batch-processing)",
        country_code: str = "co",
        country_name: str = "Colombia",
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.base_url = base_url.rstrip("/")
        self.country_code = country_code
        self.country_name = country_name
        self.headers = {"User-Agent": user_agent, "Accept-Language": "es"}

    def _search_params(self, query: ProviderQuery) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "format": "json",
            "limit": 1,
            "countrycodes": self.country_code,
        }
        if query.department and query.street:
            params.update({
                "street": strip_extraneous_parts(query.street, query.city),
                "city": query.city,
                "state": query.department,
                "country": self.country_name,
            })
        else:
            params["q"] = query.text

        if query.is_capital:
            params.update({"viewbox": CAPITAL_VIEWBOX, "bounded": 1})
        return params

    def geocode(self, query: ProviderQuery, cancel: Optional[threading.Event] = None) -> ProviderResult:
        try:
            response = self._get(f"{self.base_url}/search", self._search_params(query), self.headers)
            if response.status_code == 429:
                return self._miss(GeocodeStatus.RATE_LIMITED, "http_429")
            if not response.ok:
                return self._miss(GeocodeStatus.API_ERROR, f"http_{response.status_code}")

            results = response.json()
            if not results:
                return self._miss(GeocodeStatus.NOT_FOUND)
            if not isinstance(results, list) or not isinstance(results[0], dict):
                return self._miss(GeocodeStatus.NOT_FOUND, "malformed result")

            first = results[0]
            lat, lon = _parse_float(first.get("lat")), _parse_float(first.get("lon"))
            if lat is None or lon is None:
                return self._miss(GeocodeStatus.NOT_FOUND, "malformed result")

            return ProviderResult(
                provider=GeocodeSource.NOMINATIM,
                status=GeocodeStatus.OK,
                lat=lat,
                lon=lon,
                confidence=_parse_float(first.get("importance")),
            )

        except _SOFT_FAILURES as e:
            logger.warning(f"Nominatim search failed for '{query.text}': {e}")
            return self._miss(GeocodeStatus.EXCEPTION, str(e)[:500])

    def reverse_sub_area(self, lat: float, lon: float) -> Optional[str]:
        """
        Name of the district/suburb containing a point, if Nominatim knows it.

        Returns:
            city_district, suburb, town or neighbourhood (first present), or None
        """
        try:
            response = self._get(
                f"{self.base_url}/reverse",
                {"lat": lat, "lon": lon, "format": "json", "zoom": 16, "addressdetails": 1},
                self.headers,
            )
            if not response.ok:
                return None
            address = _json_object(response).get("address") or {}
            if not isinstance(address, dict):
                return None
        except _SOFT_FAILURES as e:
            logger.warning(f"Nominatim reverse failed for {lat}, {lon}: {e}")
            return None

        for field in ("city_district", "suburb", "town", "neighbourhood"):
            value = address.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None


_RE_LAT = re.compile(r"[\"']?(?:lat|latitude)[\"']?[:\s=]*([+-]?\d+(?:\.\d+)?)", re.I)
_RE_LON = re.compile(r"[\"']?(?:lon|lng|long|longitude)[\"']?[:\s=]*([+-]?\d+(?:\.\d+)?)", re.I)


def extract_coordinates(text: str) -> Optional[Tuple[float, float]]:
    """
    Pull a (lat, lon) pair out of free-form model output.

    Tries the outermost {...} span as JSON first, then falls back to
    "lat: x" / "lon: y" style pairs anywhere in the text.
    """
    if not text:
        return None

    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        try:
            obj = json.loads(text[start:end + 1])
            lat = _parse_float(obj.get("lat", obj.get("latitude")))
            lon = _parse_float(obj.get("lon", obj.get("lng", obj.get("longitude"))))
            if lat is not None and lon is not None:
                return lat, lon
        except (ValueError, AttributeError):
            pass

    lat_match, lon_match = _RE_LAT.search(text), _RE_LON.search(text)
    if lat_match and lon_match:
        return float(lat_match.group(1)), float(lon_match.group(1))
    return None


class GeminiGeocoder(_HttpGeocoder):
    """
    LLM-grounded geocoder.

    Asks a Gemini model, with the Google Search tool enabled, for the
    coordinates of the query and parses the reply. Only used when both
    enabled and keyed.
    """

    name = "gemini"
    API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    PROMPT = (
        "You are a precise geocoding assistant. Find the EXACT latitude and longitude "
        "coordinates for the specific address in {country}: \"{query}\". "
        "Return ONLY JSON with keys lat and lon."
    )

    def __init__(
        self,
        api_key: Optional[str],
        enabled: bool = True,
        model: str = "gemini-1.5-flash",
        country_name: str = "Colombia",
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.enabled = enabled
        self.model = model
        self.country_name = country_name

    @property
    def configured(self) -> bool:
        return bool(self.enabled and self.api_key)

    def geocode(self, query: ProviderQuery, cancel: Optional[threading.Event] = None) -> ProviderResult:
        if not self.configured:
            return self._miss(GeocodeStatus.NOT_CONFIGURED)

        body = {
            "contents": [{"parts": [{"text": self.PROMPT.format(country=self.country_name, query=query.text)}]}],
            "tools": [{"google_search": {}}],
            "generationConfig": {"temperature": 0, "maxOutputTokens": 100},
        }
        try:
            if self.rate_limiter:
                self.rate_limiter.wait()
            response = self.session.post(
                self.API_URL.format(model=self.model),
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout,
            )
            if response.status_code == 429:
                raise QuotaExhaustedError(self.name, "http_429")
            payload = _json_object(response)
            error = payload.get("error")
            if isinstance(error, dict) and error.get("status") in _QUOTA_STATUSES:
                raise QuotaExhaustedError(self.name, error.get("message"))
            if not response.ok:
                return self._miss(GeocodeStatus.API_ERROR, f"http_{response.status_code}")

            text = self._reply_text(payload)

        except QuotaExhaustedError:
            raise
        except _SOFT_FAILURES as e:
            logger.warning(f"Gemini geocode failed for '{query.text}': {e}")
            return self._miss(GeocodeStatus.EXCEPTION, str(e)[:500])

        coords = extract_coordinates(text)
        if coords is None:
            return self._miss(GeocodeStatus.NOT_FOUND, text[:200] or None)

        result = ProviderResult(provider=GeocodeSource.GEMINI, status=GeocodeStatus.OK, lat=coords[0], lon=coords[1])
        return result if result.is_success() else self._miss(GeocodeStatus.NOT_FOUND, "invalid coordinates")

    @staticmethod
    def _reply_text(payload: Dict[str, Any]) -> str:
        candidates = payload.get("candidates") or []
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts if isinstance(p, dict))
