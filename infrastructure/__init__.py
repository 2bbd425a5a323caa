"""
Infrastructure Package - Lazy Loading Implementation.

Store drivers, repositories and schema bootstrap. Imports are deferred
until first access so that importing the package never opens a
connection, reads the environment or pulls in psycopg when only the
SQLite backend is used.

Exports:
    create_driver: Backend selection
    IStoreDriver, IStoreSession: Driver interfaces
    PostgreSQLDriver, SQLiteDriver: Backends
    BaseRepository, resolve_table_name: Repository root
    TrackingRepository, MetricsRepository, RetentionRepository: Repositories
    DatabaseInitializer, initialize_database: Schema bootstrap
    ConnectionPoolManager: psycopg_pool registry
"""

_LAZY_IMPORTS = {
    'create_driver': '.factory',
    'IStoreDriver': '.interface_repository',
    'IStoreSession': '.interface_repository',
    'TABLES': '.interface_repository',
    'PostgreSQLDriver': '.postgresql',
    'SQLiteDriver': '.sqlite',
    'BaseRepository': '.base',
    'resolve_table_name': '.base',
    'TrackingRepository': '.tracking_repository',
    'MetricsRepository': '.metrics_repository',
    'RetentionRepository': '.retention_repository',
    'DatabaseInitializer': '.database_initializer',
    'initialize_database': '.database_initializer',
    'ConnectionPoolManager': '.connection_pool',
}


def __getattr__(name: str):
    """
    Lazy import mechanism - only imports when actually accessed.
    """
    if name in _LAZY_IMPORTS:
        from importlib import import_module
        module = import_module(_LAZY_IMPORTS[name], package='infrastructure')
        return getattr(module, name)
    raise AttributeError(f"module 'infrastructure' has no attribute '{name}'")


__all__ = list(_LAZY_IMPORTS)
