# redirect-service/config.py
"""Configuration for the redirect service.

Everything is read from the environment (or a ``.env`` file) once, at
startup, and handed to the store, cache and resolver explicitly.
"""

from typing import Optional
from urllib.parse import urlparse

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from errors import ConfigurationError


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Record store
    directus_url: str = Field(description="Base URL of the Directus instance")
    directus_token: str = Field(
        min_length=1, description="Static bearer token used for every store call"
    )
    links_collection: str = Field(
        default="short_links", description="Collection holding the short links"
    )
    request_timeout: float = Field(
        default=5.0,
        gt=0,
        description="Seconds allowed for the slug lookup and, separately, the click increment",
    )
    increment_max_retries: int = Field(
        default=10, ge=1, description="Conditional update attempts per click"
    )

    # Redis cache (optional)
    redis_url: Optional[str] = Field(
        default=None, description="Redis URL; the lookup cache is off when unset"
    )
    cache_ttl: int = Field(default=3600 * 24 * 7, ge=1)
    cache_miss_ttl: int = Field(default=60, ge=1)

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    log_level: str = Field(
        default="INFO", description="DEBUG, INFO, WARNING, ERROR or CRITICAL"
    )

    @field_validator("directus_url")
    @classmethod
    def check_directus_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("must be an http(s) URL")
        return value.rstrip("/")

    @field_validator("directus_token")
    @classmethod
    def check_directus_token(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


def get_settings(**overrides) -> Settings:
    """Load settings, failing fast with a ConfigurationError when invalid."""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        fields = ", ".join(
            ".".join(str(part) for part in err["loc"]) or "?" for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration ({fields}): {e}") from e
