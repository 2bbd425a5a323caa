# ============================================================================
# DRIVER FACTORY
# ============================================================================
# STATUS: Infrastructure - Central factory for store drivers
# PURPOSE: Pick the store backend from configuration
# EXPORTS: create_driver
# ============================================================================
"""
Driver Factory - Central Creation Point

The backend is chosen once, from DatabaseConfig.backend (DB_BACKEND).
Nothing above this module imports a concrete driver.

Example:
    driver = create_driver()
    tracking = TrackingRepository(driver)
"""

from typing import Optional

from config import DatabaseBackend, DatabaseConfig, get_config
from exceptions import ConfigurationError
from util_logger import LoggerFactory, ComponentType

from .interface_repository import IStoreDriver

logger = LoggerFactory.create_logger(ComponentType.FACTORY, "DriverFactory")


def create_driver(config: Optional[DatabaseConfig] = None) -> IStoreDriver:
    """
    Create the store driver for the configured backend.

    Args:
        config: Database configuration (defaults to get_config().database)

    Raises:
        ConfigurationError: Unsupported backend or incomplete settings
    """
    if config is None:
        config = get_config().database

    if config.backend == DatabaseBackend.SQLITE:
        from .sqlite import SQLiteDriver
        logger.info(f"🏭 Creating SQLite driver ({config.sqlite_path})")
        return SQLiteDriver(config)

    if config.backend == DatabaseBackend.POSTGRESQL:
        from .postgresql import PostgreSQLDriver
        logger.info(f"🏭 Creating PostgreSQL driver (schema={config.schema_name})")
        return PostgreSQLDriver(config)

    raise ConfigurationError(f"Unsupported backend: {config.backend!r}")
