import pytest
from pydantic import ValidationError

from roomgate.config import Settings, get_settings, reset_settings_cache


def test_from_env_reads_aliased_variables(monkeypatch):
    monkeypatch.setenv("SESSION_TTL_MINUTES", "30")
    monkeypatch.setenv("DEFAULT_COUNTRY", " de ")

    settings = Settings.from_env()

    assert settings.session_ttl_minutes == 30
    assert settings.default_country == "DE"


def test_settings_cache_is_reset(monkeypatch):
    reset_settings_cache()
    monkeypatch.setenv("DEFAULT_TIMEZONE", "Europe/Berlin")
    first = get_settings()
    assert get_settings() is first

    monkeypatch.setenv("DEFAULT_TIMEZONE", "Asia/Tokyo")
    reset_settings_cache()

    assert get_settings().default_timezone == "Asia/Tokyo"
    reset_settings_cache()


@pytest.mark.parametrize("field", ["session_ttl_minutes", "session_sweep_interval_seconds"])
def test_non_positive_intervals_are_rejected(field):
    with pytest.raises(ValidationError):
        Settings(**{field: 0})


def test_password_min_length_has_a_floor():
    assert Settings(password_min_length=2).password_min_length == 4
    assert Settings(password_min_length=12).password_min_length == 12


def test_store_selection_variable_is_ignored(monkeypatch):
    monkeypatch.setenv("USE_MEMORY_STORE", "false")

    settings = Settings.from_env()

    assert "use_memory_store" not in Settings.model_fields
    assert not hasattr(settings, "use_memory_store")
