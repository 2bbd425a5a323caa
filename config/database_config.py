"""
Tracker Database Configuration.

Provides configuration for the two supported stores:
    - postgresql: schema-qualified tables, psycopg 3, optional psycopg_pool
    - sqlite: one database file, bare table names

Exports:
    DatabaseBackend: Backend enumeration
    DatabaseConfig: Store configuration
    get_postgres_connection_string: Connection string factory
"""

import os
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from exceptions import ConfigurationError
from .defaults import DatabaseDefaults


class DatabaseBackend(str, Enum):
    """Supported store backends."""
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"


# ============================================================================
# DATABASE CONFIGURATION
# ============================================================================

class DatabaseConfig(BaseModel):
    """
    Store configuration for either backend.

    PostgreSQL settings are ignored for the sqlite backend and vice versa.
    """

    backend: DatabaseBackend = Field(
        default=DatabaseBackend(DatabaseDefaults.BACKEND),
        description="Store backend (postgresql or sqlite)"
    )

    # PostgreSQL connection settings
    host: str = Field(default=DatabaseDefaults.HOST, description="PostgreSQL server hostname")
    port: int = Field(default=DatabaseDefaults.PORT, description="PostgreSQL server port number")
    user: Optional[str] = Field(default=None, description="PostgreSQL username")
    password: Optional[str] = Field(default=None, repr=False, description="PostgreSQL password")
    database: str = Field(default=DatabaseDefaults.DATABASE, description="PostgreSQL database name")
    schema_name: str = Field(
        default=DatabaseDefaults.SCHEMA,
        description="PostgreSQL schema holding the tracker tables. Unused for sqlite."
    )
    dsn: Optional[str] = Field(
        default=None,
        repr=False,
        description="Full libpq connection string; overrides host/port/user/password/database"
    )

    # SQLite settings
    sqlite_path: str = Field(
        default=DatabaseDefaults.SQLITE_PATH,
        description="Path of the SQLite database file"
    )

    # Timeouts
    connection_timeout_seconds: int = Field(
        default=DatabaseDefaults.CONNECTION_TIMEOUT_SECONDS,
        ge=1,
        description="Connect timeout (PostgreSQL) and busy timeout (SQLite)"
    )
    statement_timeout_ms: int = Field(
        default=DatabaseDefaults.STATEMENT_TIMEOUT_MS,
        ge=0,
        description="Default per-session statement timeout; 0 disables it"
    )

    # Pooling (PostgreSQL only)
    use_pool: bool = Field(default=DatabaseDefaults.USE_POOL, description="Use psycopg_pool.ConnectionPool")
    pool_min: int = Field(default=DatabaseDefaults.POOL_MIN, ge=0)
    pool_max: int = Field(default=DatabaseDefaults.POOL_MAX, ge=1)

    @field_validator('schema_name')
    @classmethod
    def validate_schema_name(cls, v: str) -> str:
        if not v or not v.replace('_', '').isalnum():
            raise ValueError(f"schema_name must be alphanumeric/underscore, got {v!r}")
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.backend == DatabaseBackend.SQLITE

    @property
    def connection_string(self) -> str:
        """
        Build PostgreSQL connection string.

        The explicit dsn wins when set.
        """
        if self.dsn:
            return self.dsn
        if not self.user:
            raise ConfigurationError("POSTGRES_USER is required for the postgresql backend")
        password_part = f" password={self.password}" if self.password else ""
        return (
            f"host={self.host} port={self.port} dbname={self.database} "
            f"user={self.user}{password_part} connect_timeout={self.connection_timeout_seconds}"
        )

    def debug_dict(self) -> dict:
        """Debug output with masked password."""
        return {
            "backend": self.backend.value,
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "database": self.database,
            "password": "***MASKED***" if self.password else None,
            "dsn": "***MASKED***" if self.dsn else None,
            "schema_name": self.schema_name,
            "sqlite_path": self.sqlite_path,
            "connection_timeout_seconds": self.connection_timeout_seconds,
            "statement_timeout_ms": self.statement_timeout_ms,
            "use_pool": self.use_pool,
            "pool_min": self.pool_min,
            "pool_max": self.pool_max,
        }

    @classmethod
    def from_environment(cls) -> "DatabaseConfig":
        """Load from environment variables."""
        backend_raw = os.environ.get("DB_BACKEND", DatabaseDefaults.BACKEND).lower()
        try:
            backend = DatabaseBackend(backend_raw)
        except ValueError:
            raise ConfigurationError(
                f"DB_BACKEND must be one of {[b.value for b in DatabaseBackend]}, got {backend_raw!r}"
            )

        try:
            return cls(
                backend=backend,
                host=os.environ.get("POSTGRES_HOST", DatabaseDefaults.HOST),
                port=int(os.environ.get("POSTGRES_PORT", str(DatabaseDefaults.PORT))),
                user=os.environ.get("POSTGRES_USER"),
                password=os.environ.get("POSTGRES_PASSWORD"),
                database=os.environ.get("POSTGRES_DATABASE", DatabaseDefaults.DATABASE),
                schema_name=os.environ.get("TASKER_SCHEMA", DatabaseDefaults.SCHEMA),
                dsn=os.environ.get("POSTGRES_DSN"),
                sqlite_path=os.environ.get("SQLITE_PATH", DatabaseDefaults.SQLITE_PATH),
                connection_timeout_seconds=int(os.environ.get(
                    "DB_CONNECTION_TIMEOUT", str(DatabaseDefaults.CONNECTION_TIMEOUT_SECONDS))),
                statement_timeout_ms=int(os.environ.get(
                    "DB_STATEMENT_TIMEOUT_MS", str(DatabaseDefaults.STATEMENT_TIMEOUT_MS))),
                use_pool=os.environ.get("DB_USE_POOL", str(DatabaseDefaults.USE_POOL)).lower() == "true",
                pool_min=int(os.environ.get("DB_POOL_MIN", str(DatabaseDefaults.POOL_MIN))),
                pool_max=int(os.environ.get("DB_POOL_MAX", str(DatabaseDefaults.POOL_MAX))),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid database configuration: {e}") from e


def get_postgres_connection_string(config: Optional[DatabaseConfig] = None) -> str:
    """Connection string for the configured PostgreSQL database."""
    if config is None:
        from config import get_config
        config = get_config().database
    return config.connection_string
