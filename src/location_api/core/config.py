"""Application configuration via Pydantic Settings.

All configuration is loaded from environment variables following 12-factor principles.
"""

import re

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        description="PostgreSQL+PostGIS async connection string",
    )
    database_schema: str | None = Field(
        default=None,
        description="PostgreSQL schema for isolated environments (e.g., pr_42)",
    )

    @field_validator("database_schema")
    @classmethod
    def validate_database_schema(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not re.match(r"^[a-z_][a-z0-9_]{0,62}$", v):
            msg = "Invalid database_schema: must match ^[a-z_][a-z0-9_]{0,62}$"
            raise ValueError(msg)
        return v

    operation_timeout_seconds: float = Field(
        default=30.0,
        description="Deadline applied to each request-scoped store operation",
        gt=0,
    )

    # Cache
    redis_url: str | None = Field(
        default=None,
        description="Redis connection URL; caching is disabled when unset",
    )
    cache_key_prefix: str = Field(
        default="locapi",
        description="Prefix composed in front of every cache key",
        min_length=1,
    )
    cache_ttl_seconds: int = Field(
        default=3600,
        description="TTL for per-entity cache entries",
        gt=0,
    )
    cache_list_ttl_seconds: int = Field(
        default=300,
        description="TTL for list/search cache entries (coarse invalidation)",
        gt=0,
    )
    cache_geo_ttl_seconds: int = Field(
        default=60,
        description="TTL for spatial query cache entries (coarse invalidation)",
        gt=0,
    )
    cache_socket_timeout: float = Field(
        default=1.0,
        description="Redis socket timeout in seconds",
        gt=0,
    )

    # Hierarchy / queries
    hierarchy_max_depth: int = Field(
        default=64,
        description="Maximum depth followed by recursive address component walks",
        gt=0,
    )
    default_nearest_limit: int = Field(
        default=10,
        description="Default result count for nearest-location queries",
        gt=0,
    )
    max_page_size: int = Field(
        default=500,
        description="Upper bound for the page size of paginated endpoints",
        gt=0,
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_dir: str | None = Field(
        default=None,
        description="Directory for log files (enables file logging with 24h rotation when set)",
    )
    log_json: bool = Field(
        default=False,
        description="Write stderr logs as one JSON object per line",
    )

    # CORS
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed CORS origins (must be explicitly configured)",
    )
    cors_origin_regex: str = Field(
        default="",
        description="Regex pattern for allowed CORS origins",
    )

    # Environment
    environment: str = Field(
        default="production",
        description="Deployment environment name (e.g. production, dev, staging)",
    )

    # API
    api_v1_prefix: str = Field(
        default="/api/v1",
        description="API version prefix",
    )

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        if not self.cors_origins.strip():
            return []
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def cache_enabled(self) -> bool:
        """Whether a Redis URL is configured."""
        return bool(self.redis_url and self.redis_url.strip())


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()  # type: ignore[call-arg]
