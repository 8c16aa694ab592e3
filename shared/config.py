"""
Shared configuration management for the Recipe Access Gateway.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    env: str = Field(default="local", validation_alias="ACCESS_ENV")
    log_level: str = Field(default="info")

    # Backing store
    redis_url: str = Field(default="redis://localhost:6379/0")
    store_timeout_seconds: float = Field(default=0.25, gt=0)

    # Response cache
    cache_default_ttl_seconds: int = Field(default=300, gt=0)
    cache_key_prefix: str = Field(default="cache:")

    # Subscription gate
    account_cache_ttl_seconds: int = Field(default=3600, ge=0)
    accounts_service_url: str = Field(default="http://localhost:8020")

    # Security
    jwt_secret: str = Field(default="change-me")
    jwt_algorithm: str = Field(default="HS256")

    # Observability
    enable_metrics: bool = Field(default=True)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)


def parse_positive_int(value: Optional[str]) -> Optional[int]:
    """Parse an environment override, returning None when unusable."""
    if value is None:
        return None
    try:
        parsed = int(value.strip())
    except (TypeError, ValueError):
        return None
    return parsed if parsed >= 0 else None
