from __future__ import annotations

import os
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, field_validator

from roomgate.logging import get_logger

logger = get_logger(__name__)


def env_field(default: Any, env: str, **kwargs):
    extra = kwargs.pop("json_schema_extra", {}) or {}
    extra = {**extra, "env": env}
    return Field(default, json_schema_extra=extra, **kwargs)


class Settings(BaseModel):
    """Runtime settings for the gateway."""

    shared_fs_root: str = env_field("/srv/roomgate", "SHARED_FS_ROOT")
    redis_url: str | None = env_field("redis://localhost:6379/0", "REDIS_URL")
    allow_redis_fallback_dev: bool = env_field(False, "ALLOW_REDIS_FALLBACK_DEV")
    test_mode: bool = env_field(
        False,
        "TEST_MODE",
        description="Allow running without Redis; room hashes are then kept in the memory store.",
    )
    session_ttl_minutes: int = env_field(
        15,
        "SESSION_TTL_MINUTES",
        description="Idle lifetime of a non-permanent session",
    )
    session_sweep_interval_seconds: int = env_field(
        60,
        "SESSION_SWEEP_INTERVAL_SECONDS",
        description="Period of the background expired-session sweep",
    )
    default_timezone: str = env_field("UTC", "DEFAULT_TIMEZONE")
    default_country: str = env_field("US", "DEFAULT_COUNTRY")
    default_language_id: int = env_field(1, "DEFAULT_LANGUAGE_ID")
    default_group_id: int = env_field(
        1,
        "DEFAULT_GROUP_ID",
        description="Group every account created through the gateway joins",
    )
    password_min_length: int = env_field(8, "PASSWORD_MIN_LENGTH")

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_env(cls) -> "Settings":
        env_file_values = dotenv_values(".env")
        merged: dict[str, str] = {}
        for name, field in cls.model_fields.items():
            extra = field.json_schema_extra or {}
            env_key = extra.get("env") if isinstance(extra, dict) else None
            env_name = env_key or name.upper()
            if env_name in os.environ:
                merged[name] = os.environ[env_name]
            elif env_name in env_file_values:
                merged[name] = env_file_values[env_name]
        return cls(**merged)

    @field_validator("session_ttl_minutes", "session_sweep_interval_seconds")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive number")
        return value

    @field_validator("password_min_length")
    @classmethod
    def _sane_min_length(cls, value: int) -> int:
        if value < 4:
            logger.warning("password_min_length_raised", requested=value, applied=4)
            return 4
        return value

    @field_validator("default_country")
    @classmethod
    def _normalize_country(cls, value: str) -> str:
        return (value or "US").strip().upper()


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings.from_env()
    return _settings_cache


_settings_cache: Settings | None = None


def reset_settings_cache() -> None:
    """Clear cached settings so future calls re-read the environment."""

    global _settings_cache
    _settings_cache = None
