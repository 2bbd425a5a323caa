"""
Configuration Defaults - Single source of truth for all default values.

Organization:
    - DatabaseDefaults: Backend selection, connection and pool settings
    - CounterDefaults: Atomic increment retry policy
    - ReporterDefaults: Metrics collection loop
    - RetentionDefaults: Metrics retention window
    - AppDefaults: Application-wide settings

Usage:
    from config.defaults import DatabaseDefaults, CounterDefaults

    # In Pydantic Field definitions:
    port: int = Field(default=DatabaseDefaults.PORT, ...)
"""


# =============================================================================
# DATABASE DEFAULTS
# =============================================================================

class DatabaseDefaults:
    """
    Database configuration defaults.

    BACKEND selects the driver: "postgresql" (schema-qualified tables) or
    "sqlite" (single file, bare table names).
    """

    BACKEND = "sqlite"

    HOST = "localhost"
    PORT = 5432
    DATABASE = "tasker"
    SCHEMA = "tasker"

    SQLITE_PATH = "tasker.db"

    CONNECTION_TIMEOUT_SECONDS = 30
    STATEMENT_TIMEOUT_MS = 30000

    # psycopg_pool settings (PostgreSQL only)
    USE_POOL = False
    POOL_MIN = 1
    POOL_MAX = 10
    POOL_MAX_LIFETIME_SECONDS = 55 * 60


# =============================================================================
# ATOMIC COUNTER DEFAULTS
# =============================================================================

class CounterDefaults:
    """
    Retry policy for the atomic subtask counter.

    Delay for attempt n (1-based) is BASE_DELAY * 2**(n-1), capped at
    MAX_DELAY, plus uniform jitter in [0, JITTER].
    """

    MAX_ATTEMPTS = 6
    BASE_DELAY_SECONDS = 0.01
    MAX_DELAY_SECONDS = 1.0
    JITTER_SECONDS = 0.01


# =============================================================================
# REPORTER DEFAULTS
# =============================================================================

class ReporterDefaults:
    """Process metrics reporter loop settings."""

    INTERVAL_SECONDS = 10.0
    SAMPLE_TIMEOUT_SECONDS = 5.0
    CPU_SAMPLE_INTERVAL_SECONDS = 0.1
    INCLUDE_CHILDREN = True

    # Start times closer than this are the same process
    PID_REUSE_TOLERANCE_SECONDS = 1.0

    # Polling step while waiting for a reporter to honour shutdown_requested
    SHUTDOWN_POLL_SECONDS = 1.0
    SHUTDOWN_TIMEOUT_SECONDS = 30.0

    VERSION = "1.0.0"


# =============================================================================
# RETENTION DEFAULTS
# =============================================================================

class RetentionDefaults:
    """Metrics retention window."""

    RETENTION_DAYS = 30


# =============================================================================
# APPLICATION DEFAULTS
# =============================================================================

class AppDefaults:
    """Application-wide defaults."""

    ENVIRONMENT = "dev"
    DEBUG_MODE = False
    LOG_LEVEL = "INFO"
