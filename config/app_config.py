"""
Main Application Configuration.

Composes domain-specific configuration modules:
    - DatabaseConfig (store backend and connectivity)
    - CounterConfig (atomic increment retries)
    - ReporterConfig (metrics loop)
    - RetentionConfig (metrics retention)

Exports:
    AppConfig: Main configuration class

Dependencies:
    pydantic: BaseModel for configuration validation
    config.database_config: DatabaseConfig
    config.tracker_config: CounterConfig, ReporterConfig, RetentionConfig
    config.defaults: Default value constants

Pattern:
    Composition over inheritance - domain configs are composed, not inherited.
"""

import os
from pydantic import BaseModel, Field

from .database_config import DatabaseConfig
from .tracker_config import CounterConfig, ReporterConfig, RetentionConfig
from .defaults import AppDefaults


# ============================================================================
# APPLICATION CONFIGURATION
# ============================================================================

class AppConfig(BaseModel):
    """
    Application configuration - composition of domain configs.
    """

    debug_mode: bool = Field(
        default=AppDefaults.DEBUG_MODE,
        description="Enable verbose diagnostics. Set DEBUG_MODE=true to enable."
    )

    environment: str = Field(
        default=AppDefaults.ENVIRONMENT,
        description="Environment name (dev, qa, prod)"
    )

    log_level: str = Field(
        default=AppDefaults.LOG_LEVEL,
        description="Root log level for entry points"
    )

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    counter: CounterConfig = Field(default_factory=CounterConfig)
    reporter: ReporterConfig = Field(default_factory=ReporterConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)

    @property
    def schema_name(self) -> str:
        return self.database.schema_name

    @classmethod
    def from_environment(cls) -> "AppConfig":
        """Load every domain config from environment variables."""
        return cls(
            debug_mode=os.environ.get("DEBUG_MODE", str(AppDefaults.DEBUG_MODE)).lower() == "true",
            environment=os.environ.get("ENVIRONMENT", AppDefaults.ENVIRONMENT),
            log_level=os.environ.get("LOG_LEVEL", AppDefaults.LOG_LEVEL),
            database=DatabaseConfig.from_environment(),
            counter=CounterConfig.from_environment(),
            reporter=ReporterConfig.from_environment(),
            retention=RetentionConfig.from_environment(),
        )
