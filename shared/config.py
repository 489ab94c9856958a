"""
Shared configuration management for the Access Layer policy engine.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="POLICY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Observability
    metrics_enabled: bool = Field(default=False)


class PolicySettings(BaseConfig):
    """Policy engine configuration."""

    # Decision cache
    decision_cache_enabled: bool = Field(default=True)
    decision_cache_ttl_seconds: float = Field(default=5.0, ge=0)
    decision_cache_max_entries: int = Field(default=10000, ge=1)

    # Constraint evaluation
    context_requirements_fail_closed: bool = Field(default=False)
    default_timezone: str = Field(default="UTC")


@lru_cache(maxsize=1)
def get_settings() -> PolicySettings:
    """Get process-wide policy settings."""
    return PolicySettings()
