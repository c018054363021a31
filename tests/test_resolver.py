import threading

import pytest

from conftest import FakeGeocoder

from postal_resolver.geocoding.models import Coordinate, GeocodeStatus, SimplificationLevel
from postal_resolver.utils.errors import QuotaExhaustedError, RecordAbandonedError

L = SimplificationLevel


def by_level(provider, answers):
    """Answer function returning ``answers[level]`` (a hit tuple or None) for each query."""
    def _answer(query):
        hit = answers.get(query.level)
        if hit is None:
            return provider.miss()
        return provider.hit(*hit)
    return _answer


def test_build_request_normalizes_and_strips(make_resolver):
    resolver = make_resolver()

    request = resolver.build_request("Cra 7 # 45-10, Barrio San Fernando", "Cali", "Valle del Cauca", "Ana Ruiz")

    assert request.address == "Carrera 7 # 45-10"
    assert request.street == "Carrera 7"
    assert not request.is_capital
    assert request.text_for(L.FULL) == "Carrera 7 # 45-10, Cali, Valle del Cauca, Ana Ruiz, Colombia"
    assert request.text_for(L.STREET) == "Carrera 7, Cali, Valle del Cauca, Colombia"
    assert request.text_for(L.CITY) == "Cali, Valle del Cauca, Colombia"


def test_build_request_uses_strict_capital_names(make_resolver):
    request = make_resolver().build_request("Cl 26 # 68-90", "BOGOTA D.C.")

    assert request.is_capital
    assert request.city == "Bogotá"
    assert request.department == "Bogotá D.C."
    assert request.address == "Calle 26 # 68-90"
    assert request.query_for(L.FULL).is_capital


def test_second_resolution_is_served_from_cache(make_resolver):
    primary = FakeGeocoder("google")
    primary._answer = lambda q: primary.hit(3.4372, -76.5197)
    resolver = make_resolver(primary=primary)
    request = resolver.build_request("Calle 59C 2C-76", "Cali", "Valle del Cauca")

    assert resolver.resolve(request) == Coordinate(3.4372, -76.5197)
    assert len(primary.calls) == 1

    assert resolver.resolve(request) == Coordinate(3.4372, -76.5197)
    assert len(primary.calls) == 1


def test_total_failure_is_cached_as_negative(make_resolver, cache):
    primary = FakeGeocoder("google")
    resolver = make_resolver(primary=primary)
    request = resolver.build_request("Calle 999 # 999-99", "Cali")

    assert resolver.resolve(request) is None
    assert [q.level for q in primary.calls] == [L.FULL, L.STREET, L.CITY]
    assert cache.get(request.cache_key()).is_negative

    assert resolver.resolve(request) is None
    assert len(primary.calls) == 3


def test_retry_ignores_cached_negative_and_runs_level_zero_only(make_resolver):
    primary = FakeGeocoder("google")
    resolver = make_resolver(primary=primary)
    request = resolver.build_request("Calle 5 # 10-20", "Cali")
    assert resolver.resolve(request) is None

    primary._answer = lambda q: primary.hit(3.45, -76.53)
    primary.calls.clear()

    assert resolver.resolve(request, retry=True) == Coordinate(3.45, -76.53)
    assert [q.level for q in primary.calls] == [L.FULL]


def test_level_positive_is_reused_by_other_records(make_resolver):
    primary = FakeGeocoder("google")
    primary._answer = by_level(primary, {L.STREET: (3.45, -76.53)})
    resolver = make_resolver(primary=primary)

    first = resolver.build_request("Calle 5 # 10-20", "Cali")
    second = resolver.build_request("Calle 5 # 30-40", "Cali")
    assert resolver.resolve(first) == Coordinate(3.45, -76.53)
    primary.calls.clear()

    assert resolver.resolve(second) == Coordinate(3.45, -76.53)
    # only the level-0 query is new, the street query is a cache hit
    assert [q.level for q in primary.calls] == [L.FULL]


def test_non_zero_start_level_leaves_record_key_alone(make_resolver, cache):
    primary = FakeGeocoder("google")
    primary._answer = lambda q: primary.hit(3.45, -76.53)
    resolver = make_resolver(primary=primary)
    request = resolver.build_request("Calle 5 # 10-20", "Cali")

    assert resolver.resolve(request, start_level=L.STREET) == Coordinate(3.45, -76.53)

    assert [q.level for q in primary.calls] == [L.STREET]
    assert cache.get(request.cache_key()) is None
    assert cache.get(request.cache_key(L.STREET)).coordinate == Coordinate(3.45, -76.53)


def test_low_confidence_escalates_to_coarser_level(make_resolver):
    secondary = FakeGeocoder("nominatim")
    confidences = {L.FULL: 0.3, L.STREET: 0.6}
    secondary._answer = lambda q: secondary.hit(3.44, -76.52, confidence=confidences.get(q.level, 0.9))
    resolver = make_resolver(secondary=secondary)
    request = resolver.build_request("Calle 59C # 2C-76", "Cali")

    assert resolver.resolve(request) == Coordinate(3.44, -76.52)
    assert [q.level for q in secondary.calls] == [L.FULL, L.STREET]


def test_rate_limit_backs_off_and_retries_same_level(make_resolver):
    secondary = FakeGeocoder("nominatim")
    responses = iter([
        secondary.miss(GeocodeStatus.RATE_LIMITED),
        secondary.miss(GeocodeStatus.RATE_LIMITED),
        secondary.hit(3.44, -76.52, confidence=0.9),
    ])
    secondary._answer = lambda q: next(responses)
    resolver = make_resolver(secondary=secondary)

    coord = resolver.resolve(resolver.build_request("Calle 59C # 2C-76", "Cali"))

    assert coord == Coordinate(3.44, -76.52)
    assert [q.level for q in secondary.calls] == [L.FULL, L.FULL, L.FULL]


def test_rate_limit_retries_are_bounded(make_resolver):
    secondary = FakeGeocoder("nominatim")
    secondary._answer = lambda q: secondary.miss(GeocodeStatus.RATE_LIMITED)
    resolver = make_resolver(secondary=secondary, max_rate_limit_retries=2)

    assert resolver.resolve(resolver.build_request("Calle 1 # 2-3", "Cali")) is None
    # two retries at level 0, then one call per remaining level
    assert [q.level for q in secondary.calls] == [L.FULL, L.FULL, L.FULL, L.STREET, L.CITY]


def test_tertiary_only_called_when_configured(make_resolver):
    tertiary = FakeGeocoder("gemini", configured=False)
    resolver = make_resolver(primary=FakeGeocoder("google"), tertiary=tertiary)

    assert resolver.resolve(resolver.build_request("Calle 1 # 2-3", "Cali")) is None
    assert tertiary.calls == []

    tertiary._configured = True
    tertiary._answer = lambda q: tertiary.hit(3.4, -76.5)
    assert resolver.resolve(resolver.build_request("Calle 7 # 2-3", "Cali")) == Coordinate(3.4, -76.5)


def test_quota_exhaustion_propagates(make_resolver):
    primary = FakeGeocoder("google")

    def exhausted(query):
        raise QuotaExhaustedError("google", "OVER_QUERY_LIMIT")

    primary._answer = exhausted
    resolver = make_resolver(primary=primary)

    with pytest.raises(QuotaExhaustedError):
        resolver.resolve(resolver.build_request("Calle 1 # 2-3", "Cali"))


def test_cancelled_record_is_abandoned_before_any_call(make_resolver):
    primary = FakeGeocoder("google")
    resolver = make_resolver(primary=primary)
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(RecordAbandonedError):
        resolver.resolve(resolver.build_request("Calle 1 # 2-3", "Cali"), cancel=cancel)
    assert primary.calls == []


def test_retry_outcome_is_cached_under_its_own_key(make_resolver, cache):
    primary = FakeGeocoder("google")
    resolver = make_resolver(primary=primary)
    request = resolver.build_request("Calle 5 # 10-20", "Cali")
    assert resolver.resolve(request) is None
    primary.calls.clear()

    assert resolver.resolve(request, retry=True) is None
    assert [q.level for q in primary.calls] == [L.FULL]
    assert cache.get(request.retry_cache_key()).is_negative
    # the record's own negative is untouched
    assert cache.get(request.cache_key()).is_negative

    assert resolver.resolve(request, retry=True) is None
    assert len(primary.calls) == 1


def test_level_negative_is_skipped_by_other_records(make_resolver, cache):
    primary = FakeGeocoder("google")
    resolver = make_resolver(primary=primary)

    first = resolver.build_request("Calle 5 # 10-20", "Cali")
    second = resolver.build_request("Calle 5 # 30-40", "Cali")
    assert resolver.resolve(first) is None
    assert cache.get(first.cache_key(L.STREET)).is_negative
    assert cache.get(first.cache_key(L.CITY)).is_negative
    primary.calls.clear()

    assert resolver.resolve(second) is None
    assert [q.level for q in primary.calls] == [L.FULL]
