"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SSO happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an env file. Field names map to env var names (e.g. token_ttl ->
      TOKEN_TTL). Type coercion and validation are built in.

Config file:
  The env file defaults to ".env" in the working directory. CONFIG_PATH (or
  the --config CLI flag, which sets it) points at a different file. A path
  ending in .yaml or .yml is read as YAML with the field names as keys
  (env, storage_path, token_ttl, ...); anything else is read as an env file.
  Environment variables override values from either kind of file. A path
  that does not exist is a startup error rather than a silent fallback.

Durations:
  TOKEN_TTL and REQUEST_TIMEOUT accept plain seconds ("3600"), ISO 8601
  ("PT1H"), "HH:MM:SS", or unit-suffixed values such as "1h", "15m", "1h30m",
  "500ms".

Layer rule: core/ may not import from api/ or auth/.
"""

import logging
import os
import re
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict, YamlConfigSettingsSource

logger = logging.getLogger("sso.config")

_DURATION_RE = re.compile(r"^(?:\d+(?:\.\d+)?(?:h|ms|m|s))+$")
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(h|ms|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}
_YAML_SUFFIXES = (".yaml", ".yml")


def parse_duration(value):
    """Convert a unit-suffixed duration string into a timedelta.

    Values that are not unit-suffixed strings are returned unchanged so that
    pydantic's own timedelta parsing (seconds, ISO 8601, HH:MM:SS) applies.
    """
    if not isinstance(value, str):
        return value
    compact = value.strip().replace(" ", "")
    if compact.isdigit():
        return timedelta(seconds=int(compact))
    if not _DURATION_RE.match(compact):
        return value
    seconds = sum(float(amount) * _UNIT_SECONDS[unit] for amount, unit in _DURATION_PART_RE.findall(compact))
    return timedelta(seconds=seconds)


class Settings(BaseSettings):
    """Application settings loaded from environment variables and an env file.

    storage_path and token_ttl have no defaults: a deployment that forgets
    them fails at startup with a pydantic ValidationError.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    env: Literal["local", "dev", "prod"] = "local"
    # SQLite file path or any SQLAlchemy URL.
    storage_path: str

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    token_ttl: timedelta

    # ------------------------------------------------------------------
    # HTTP transport
    # ------------------------------------------------------------------

    http_host: str = "127.0.0.1"
    http_port: int = 44044
    request_timeout: timedelta = timedelta(seconds=10)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # yaml_file is unset unless load_settings() was given a YAML path.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("token_ttl", "request_timeout", mode="before")
    @classmethod
    def _parse_duration(cls, value):
        return parse_duration(value)

    @field_validator("token_ttl", "request_timeout")
    @classmethod
    def _require_positive(cls, value: timedelta) -> timedelta:
        if value <= timedelta(0):
            raise ValueError("duration must be positive")
        return value

    @field_validator("storage_path")
    @classmethod
    def _require_storage_path(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("storage_path must not be empty")
        return value


def load_settings(config_path: str | None = None) -> Settings:
    """Build Settings from an explicit config file, CONFIG_PATH, or ".env".

    Raises FileNotFoundError if an explicitly requested file is missing and
    pydantic.ValidationError if the resulting values are invalid.
    """
    path = config_path or os.environ.get("CONFIG_PATH")
    if not path:
        return Settings()
    if not Path(path).is_file():
        raise FileNotFoundError(f"config file does not exist: {path}")
    logger.debug("loading config from %s", path)
    if Path(path).suffix.lower() in _YAML_SUFFIXES:
        return _settings_from_yaml(path)(_env_file=None)
    return Settings(_env_file=path)


def _settings_from_yaml(path: str) -> type[Settings]:
    """Return a Settings subclass whose YAML source reads path."""
    return type("Settings", (Settings,), {"model_config": SettingsConfigDict(yaml_file=path)})


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return load_settings()
