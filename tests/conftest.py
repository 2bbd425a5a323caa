"""
Root conftest.py: sys.path, env vars, shared fixtures.

Sets up the test environment so all production code can be imported
without a PostgreSQL server. Store-backed tests run against a fresh
SQLite file per test.
"""

import os
import sys

import pytest

# Add project root to sys.path so 'core', 'infrastructure', 'config', etc. are importable
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


@pytest.fixture(autouse=True, scope="session")
def set_minimal_env_vars():
    """
    Set minimal environment variables to prevent import crashes.

    The config singleton reads the environment on first use. We provide
    safe defaults so nothing tries to reach a PostgreSQL server.
    """
    defaults = {
        "DB_BACKEND": "sqlite",
        "ENVIRONMENT": "dev",
        "LOG_LEVEL": "DEBUG",
        "METRICS_RETENTION_DAYS": "30",
        "REPORTER_INTERVAL_SECONDS": "10",
        "REPORTER_SAMPLE_TIMEOUT_SECONDS": "5",
        "REPORTER_CPU_SAMPLE_INTERVAL": "0",
    }
    for key, value in defaults.items():
        os.environ.setdefault(key, value)


@pytest.fixture(autouse=True)
def fresh_config():
    """Every test sees the environment as it is now, not a cached singleton."""
    from config import reset_config

    reset_config()
    yield
    reset_config()


# ============================================================================
# STORE FIXTURES
# ============================================================================

@pytest.fixture
def sqlite_config(tmp_path):
    """DatabaseConfig for a throwaway SQLite file."""
    from config import DatabaseBackend, DatabaseConfig

    return DatabaseConfig(
        backend=DatabaseBackend.SQLITE,
        sqlite_path=str(tmp_path / "tasker.db"),
        connection_timeout_seconds=30,
    )


@pytest.fixture
def driver(sqlite_config):
    """Initialized SQLite driver (schema, tables, indexes)."""
    from infrastructure.database_initializer import initialize_database
    from infrastructure.sqlite import SQLiteDriver

    store = SQLiteDriver(sqlite_config)
    result = initialize_database(store)
    assert result.success, result.errors
    yield store
    store.close()


@pytest.fixture
def registration(driver):
    from services.registration_service import RegistrationService

    return RegistrationService(driver)


@pytest.fixture
def state_machine(driver):
    from core.state_manager import RunStateMachine

    return RunStateMachine(driver, retention_days=30)


@pytest.fixture
def registered_task(registration):
    """One registered R task in a fresh stage."""
    from tests.factories.model_factories import make_task_registration

    return registration.register_task(make_task_registration())


@pytest.fixture
def tracker(driver):
    from core.tracker import Tracker

    return Tracker(driver)
