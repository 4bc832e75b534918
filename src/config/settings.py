"""Application settings using Pydantic Settings.

Centralized configuration for the RBAC authority. Every value can be
overridden through environment variables (``APP_`` prefix for the main
settings, ``REDIS_`` and ``CELERY_`` for the background sweep).
"""

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class RedisSettings(BaseSettings):
    """Redis configuration for the Celery broker and cache invalidation broadcasts."""

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")
    ssl: bool = Field(default=False, description="Use SSL for Redis connection")
    socket_timeout: float = Field(default=1.0, gt=0, description="Seconds before a Redis call gives up")

    @property
    def url(self) -> str:
        """Get Redis URL."""
        return self.url_for(self.db)

    def url_for(self, db: int) -> str:
        """Redis URL for database number ``db`` on this server."""
        auth = f":{self.password}@" if self.password else ""
        protocol = "rediss" if self.ssl else "redis"
        return f"{protocol}://{auth}{self.host}:{self.port}/{db}"


class CelerySettings(BaseSettings):
    """Celery task queue configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CELERY_",
        extra="ignore",
    )

    broker_db: int = Field(default=1, description="Redis DB for Celery broker")
    result_db: int = Field(default=2, description="Redis DB for Celery results")

    task_serializer: str = Field(default="json", description="Task serialization format")
    result_serializer: str = Field(default="json", description="Result serialization format")
    accept_content: list = Field(default=["json"], description="Accepted content types")

    task_acks_late: bool = Field(default=True, description="Acknowledge tasks after completion")
    task_reject_on_worker_lost: bool = Field(default=True, description="Requeue tasks if worker dies")
    worker_prefetch_multiplier: int = Field(default=1, description="Tasks prefetched per worker")
    task_time_limit: int = Field(default=300, description="Hard task time limit in seconds")
    task_soft_time_limit: int = Field(default=240, description="Soft task time limit")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application info
    name: str = Field(default="RBAC Authority", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="development", description="Environment name")

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=False, description="Emit JSON formatted logs")

    # Role policy
    baseline_role: str = Field(
        default="Voter",
        description="Role every user keeps; can be deactivated but never hard-deleted",
    )
    admin_roles: List[str] = Field(
        default=["Manager", "Admin"],
        description="Roles allowed to mutate assignments, roles and bindings",
    )
    role_manager_roles: List[str] = Field(
        default=["Manager"],
        description="Roles allowed to delete roles and permissions from the catalog",
    )

    # Resolution cache
    cache_ttl_seconds: int = Field(default=300, ge=1, description="Resolution cache TTL")
    cache_maxsize: int = Field(default=10000, ge=1, description="Max cached entries per process")
    cache_broadcast_enabled: bool = Field(
        default=False,
        description="Publish and apply cache invalidations over Redis pub/sub across processes",
    )
    cache_invalidation_channel: str = Field(
        default="rbac:invalidate",
        description="Redis channel carrying cache invalidations",
    )

    # Expiry sweep
    expiry_sweep_interval_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Beat interval for the role expiry sweep",
    )

    # Startup
    create_schema_on_startup: bool = Field(
        default=True,
        description="Create missing RBAC tables when the app starts",
    )
    seed_defaults_on_startup: bool = Field(
        default=False,
        description="Seed the default role and permission catalog when the app starts",
    )

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @field_validator("baseline_role")
    @classmethod
    def _baseline_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("baseline_role must not be blank")
        return value

    # Nested settings (loaded separately)
    @property
    def redis(self) -> RedisSettings:
        return RedisSettings()

    @property
    def celery(self) -> CelerySettings:
        return CelerySettings()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment in ("production", "prod", "staging")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings instance.

    Returns:
        Settings: Cached settings loaded from environment.
    """
    return Settings()
