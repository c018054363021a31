import pytest
from pydantic import ValidationError

from postal_resolver.settings import PLACEHOLDER_KEY, Settings


def make_settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


def test_defaults_use_free_provider_profile():
    s = make_settings()

    assert not s.google_configured
    assert not s.gemini_configured
    assert s.schedule_profile() == (1, 1.2)
    assert s.provider_timeout_s < s.record_timeout_s


def test_provider_timeout_must_be_shorter_than_record_timeout():
    with pytest.raises(ValidationError):
        make_settings(provider_timeout_s=8, record_timeout_s=8)


def test_placeholder_key_counts_as_absent():
    s = make_settings(enable_google=True, google_maps_api_key=PLACEHOLDER_KEY)

    assert not s.google_configured


def test_key_without_enable_flag_is_ignored():
    assert not make_settings(google_maps_api_key="real-key").google_configured


def test_paid_provider_profile_allows_parallelism(monkeypatch):
    monkeypatch.setenv("POSTAL_CONCURRENCY", "4")
    s = make_settings(enable_google=True, google_maps_api_key="real-key")

    assert s.concurrency == 4
    assert s.schedule_profile() == (4, 0.15)
    assert make_settings(enable_google=True, google_maps_api_key="real-key", concurrency=None).schedule_profile() == (2, 0.15)


def test_llm_provider_profile():
    s = make_settings(enable_gemini=True, gemini_api_key="real-key")

    assert s.gemini_configured
    assert s.schedule_profile() == (1, 0.4)


def test_concurrency_is_bounded():
    with pytest.raises(ValidationError):
        make_settings(concurrency=17)
