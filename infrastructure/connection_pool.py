# ============================================================================
# POSTGRESQL CONNECTION POOL MANAGER
# ============================================================================
# STATUS: Infrastructure - Optional connection pooling
# PURPOSE: Shared psycopg_pool pools for long-lived processes (reporter daemon)
# EXPORTS: ConnectionPoolManager
# DEPENDENCIES: psycopg_pool, psycopg
# ============================================================================
"""
Connection Pool Manager.

Short-lived task scripts open one connection per operation. The reporter
daemon and heavily instrumented workers open many; for them a pool avoids
a TCP/auth handshake per increment.

Pooling is opt-in (DB_USE_POOL=true). One pool per connection string,
shared by every driver instance in the process.

Usage:
    with ConnectionPoolManager.get_connection(db_config) as conn:
        conn.execute("SELECT 1")

    ConnectionPoolManager.shutdown()  # on SIGTERM
"""

import threading
from contextlib import contextmanager
from typing import Dict, Optional

from psycopg_pool import ConnectionPool
from psycopg.rows import dict_row

from config import DatabaseConfig
from config.defaults import DatabaseDefaults
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.REPOSITORY, "ConnectionPoolManager")

# Timeout for draining connections on pool close (seconds)
POOL_CLOSE_TIMEOUT = 30.0


class ConnectionPoolManager:
    """
    Process-wide pool registry.

    Class-level state is used because:
    1. Pools should be shared across all driver instances
    2. One pool per connection string is enough
    3. Thread-safe via lock
    """

    _pools: Dict[str, ConnectionPool] = {}
    _pool_lock = threading.Lock()
    _shutdown_requested = False

    @classmethod
    def _configure_connection(cls, conn) -> None:
        """Called by the pool for each new connection."""
        conn.row_factory = dict_row

    @classmethod
    def _create_pool(cls, db_config: DatabaseConfig) -> ConnectionPool:
        logger.info(
            f"Creating connection pool: min={db_config.pool_min}, max={db_config.pool_max}"
        )
        pool = ConnectionPool(
            conninfo=db_config.connection_string,
            min_size=db_config.pool_min,
            max_size=db_config.pool_max,
            timeout=float(db_config.connection_timeout_seconds),
            max_lifetime=float(DatabaseDefaults.POOL_MAX_LIFETIME_SECONDS),
            kwargs={"connect_timeout": db_config.connection_timeout_seconds},
            configure=cls._configure_connection,
            open=True,
        )
        logger.info("✅ Connection pool created")
        return pool

    @classmethod
    def _get_or_create_pool(cls, db_config: DatabaseConfig) -> ConnectionPool:
        """Thread-safe via double-check locking."""
        key = db_config.connection_string
        pool = cls._pools.get(key)
        if pool is None:
            with cls._pool_lock:
                pool = cls._pools.get(key)
                if pool is None:
                    pool = cls._create_pool(db_config)
                    cls._pools[key] = pool
        return pool

    @classmethod
    @contextmanager
    def get_connection(cls, db_config: DatabaseConfig, timeout: Optional[float] = None):
        """
        Borrow a connection from the pool for this config.

        Args:
            timeout: Longest wait for a free connection (pool default when None)

        Raises:
            RuntimeError: Pool is shutting down
            psycopg_pool.PoolTimeout: No connection available within timeout
        """
        if cls._shutdown_requested:
            raise RuntimeError("Connection pool is shutting down. Cannot get new connections.")

        pool = cls._get_or_create_pool(db_config)
        with pool.connection(timeout=timeout) as conn:
            yield conn

    @classmethod
    def shutdown(cls) -> None:
        """Drain and close every pool; no new connections afterwards."""
        cls._shutdown_requested = True
        with cls._pool_lock:
            pools = list(cls._pools.values())
            cls._pools.clear()
        for pool in pools:
            logger.info("Shutting down connection pool...")
            try:
                pool.close(timeout=POOL_CLOSE_TIMEOUT)
            except Exception as e:
                logger.warning(f"⚠️ Error during pool shutdown: {e}")


__all__ = [
    'ConnectionPoolManager',
]
