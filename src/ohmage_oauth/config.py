# Service configuration.
# Created: 2026-10-19
#
# Values come from OHMAGE_OAUTH_* environment variables or a .env file in the
# working directory. Lifetimes are policy, so they live here and not in the
# flow logic.

from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Runtime settings for the authorization server."""

    model_config = SettingsConfigDict(
        env_prefix="OHMAGE_OAUTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Lifetimes
    code_ttl_minutes: int = Field(default=5, gt=0)
    token_ttl_minutes: int = Field(default=30, gt=0)

    # Storage
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".ohmage-oauth")
    persist_tokens: bool = False

    # Reference registries: JSON user list and the schema ids scopes may name
    # ("steps" or "steps:2").
    users_file: Path | None = None
    streams: list[str] = Field(default_factory=list)
    surveys: list[str] = Field(default_factory=list)

    # HTTP surface
    api_prefix: str = ""
    auth_header_scheme: str = "ohmage"
    cors_allowed_origins: list[str] = Field(default_factory=list)
    host: str = "127.0.0.1"
    port: int = 8080

    # Rate limiting of credential endpoints
    auth_rate_per_second: float = Field(default=1.0, gt=0)
    auth_rate_burst: int = Field(default=10, gt=0)

    log_level: str = "INFO"

    @field_validator("api_prefix")
    @classmethod
    def _strip_prefix(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if value and not value.startswith("/"):
            value = "/" + value
        return value

    @property
    def code_ttl(self) -> timedelta:
        return timedelta(minutes=self.code_ttl_minutes)

    @property
    def token_ttl(self) -> timedelta:
        return timedelta(minutes=self.token_ttl_minutes)

    @classmethod
    def load(cls) -> Settings:
        """Build settings from the environment."""
        return cls()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.load()


def get_config_dir() -> Path:
    """Return the data directory, creating it on first use."""
    path = get_settings().data_dir.expanduser()
    path.mkdir(parents=True, exist_ok=True)
    return path
