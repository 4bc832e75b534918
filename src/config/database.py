"""Database configuration using Pydantic Settings.

The RBAC tables live in PostgreSQL in production (asyncpg for the service,
psycopg2 for Alembic) and in a local SQLite file for development and tests.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """
    Connection settings, read from ``DB_*`` environment variables.

    Example:
        DB_DRIVER=postgresql+asyncpg
        DB_HOST=db.internal
        DB_NAME=rbac
        DB_USER=rbac
        DB_PASSWORD=secret
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    driver: str = Field(
        default="sqlite+aiosqlite",
        description="SQLAlchemy async driver: sqlite+aiosqlite or postgresql+asyncpg",
    )

    # PostgreSQL
    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    name: str = Field(default="rbac", description="Database name")
    user: str = Field(default="", description="Database user")
    password: str = Field(default="", description="Database password")

    # SQLite
    sqlite_path: Path = Field(default=Path("data/rbac.db"), description="SQLite database file")

    # Pooling (PostgreSQL only; SQLite uses NullPool)
    pool_size: int = Field(default=10, ge=1, le=100, description="Connections kept in the pool")
    max_overflow: int = Field(default=20, ge=0, le=100, description="Max connections above pool_size")
    pool_timeout: int = Field(default=30, ge=1, description="Seconds to wait for a pooled connection")
    pool_recycle: int = Field(default=1800, ge=60, description="Seconds after which a connection is recycled")
    pool_pre_ping: bool = Field(default=True, description="Test connections before using them")

    echo_sql: bool = Field(default=False, description="Echo every SQL statement")
    query_timeout: int = Field(default=30, ge=1, description="Statement timeout in seconds")

    @computed_field
    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.driver.lower()

    @computed_field
    @property
    def is_postgres(self) -> bool:
        return "postgres" in self.driver.lower()

    @computed_field
    @property
    def async_url(self) -> str:
        """URL for the service's async engine. Creates the SQLite directory on first use."""
        if self.is_sqlite:
            self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)
            return f"sqlite+aiosqlite:///{self.sqlite_path.absolute()}"
        return f"{self.driver}://{self._credentials()}{self.host}:{self.port}/{self.name}"

    @computed_field
    @property
    def sync_url(self) -> str:
        """URL for Alembic, which runs on a synchronous driver."""
        if self.is_sqlite:
            return f"sqlite:///{self.sqlite_path.absolute()}"
        return f"postgresql+psycopg2://{self._credentials()}{self.host}:{self.port}/{self.name}"

    def _credentials(self) -> str:
        if not self.user:
            return ""
        if self.password:
            return f"{self.user}:{self.password}@"
        return f"{self.user}@"

    def get_connect_args(self) -> dict:
        """Driver-specific ``connect_args`` for ``create_async_engine``."""
        if self.is_sqlite:
            return {"check_same_thread": False, "timeout": self.query_timeout}
        return {"command_timeout": self.query_timeout}


@lru_cache
def get_database_settings() -> DatabaseSettings:
    """Cached settings loaded from the environment."""
    return DatabaseSettings()
