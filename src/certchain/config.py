"""
Configuration — typed, validated settings loaded from environment/.env.

Uses pydantic-settings to:
  - Load from environment variables (prefix CERTCHAIN_)
  - Fall back to .env file
  - Validate types and constraints at startup

Architecture: Only AppSettings is a BaseSettings instance. Sub-settings are plain
BaseModel classes populated by AppSettings via env_nested_delimiter="__", so the env
var CERTCHAIN_CHAIN__MATCH_KEY_IDENTIFIERS maps to chain.match_key_identifiers,
CERTCHAIN_API__PORT maps to api.port, etc.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class ChainSettings(BaseModel):
    """
    Chain reconstruction options.

    Issuers are matched by Common Name unless `match_key_identifiers` is set,
    in which case Authority/Subject Key Identifiers are compared first.
    """

    match_key_identifiers: bool = Field(
        default=False,
        description="Match issuers by AKI/SKI when both are present",
    )


class ApiSettings(BaseModel):
    """HTTP surface configuration."""

    host: str = Field(default="127.0.0.1", description="Bind address for `certchain serve`")
    port: int = Field(default=8000, ge=1, le=65535, description="Bind port for `certchain serve`")
    max_upload_bytes: int = Field(
        default=5 * 1024 * 1024,
        ge=1,
        description="Largest accepted upload, per file",
    )


class AppSettings(BaseSettings):
    """
    Root application settings — aggregates all sub-settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="CERTCHAIN_",
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    chain: ChainSettings = Field(default_factory=lambda: ChainSettings())
    api: ApiSettings = Field(default_factory=lambda: ApiSettings())

    log_level: str = Field(default="INFO")
    default_password: SecretStr = Field(
        default=SecretStr(""),
        description="Password for the first attempt at opening a PKCS#12 container",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Reject names the logging module does not know."""
        level = value.strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value!r}")
        return level
