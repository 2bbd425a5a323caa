"""
Configuration loading tests.
"""

import pytest

from config import (
    AppConfig,
    DatabaseBackend,
    DatabaseConfig,
    ReporterConfig,
    RetentionConfig,
    debug_config,
    get_config,
    reset_config,
)
from exceptions import ConfigurationError


class TestDatabaseConfig:

    def test_sqlite_from_environment(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DB_BACKEND", "SQLite")
        monkeypatch.setenv("SQLITE_PATH", str(tmp_path / "x.db"))
        config = DatabaseConfig.from_environment()
        assert config.is_sqlite
        assert config.sqlite_path == str(tmp_path / "x.db")

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("DB_BACKEND", "oracle")
        with pytest.raises(ConfigurationError):
            DatabaseConfig.from_environment()

    def test_bad_port(self, monkeypatch):
        monkeypatch.setenv("DB_BACKEND", "postgresql")
        monkeypatch.setenv("POSTGRES_PORT", "five")
        with pytest.raises(ConfigurationError):
            DatabaseConfig.from_environment()

    def test_connection_string_from_parts(self):
        config = DatabaseConfig(backend=DatabaseBackend.POSTGRESQL, host="db", port=6543,
                                user="tracker", password="s3cret", database="pipeline")
        conn = config.connection_string
        assert "host=db" in conn and "port=6543" in conn and "dbname=pipeline" in conn
        assert "password=s3cret" in conn

    def test_dsn_wins(self):
        config = DatabaseConfig(backend=DatabaseBackend.POSTGRESQL, dsn="postgresql://u@h/d", user="x")
        assert config.connection_string == "postgresql://u@h/d"

    def test_missing_user(self):
        config = DatabaseConfig(backend=DatabaseBackend.POSTGRESQL)
        with pytest.raises(ConfigurationError):
            config.connection_string

    def test_debug_dict_masks_secrets(self):
        config = DatabaseConfig(backend=DatabaseBackend.POSTGRESQL, user="u",
                                password="pw", dsn="postgresql://u:pw@h/d")
        info = config.debug_dict()
        assert info["password"] == "***MASKED***"
        assert info["dsn"] == "***MASKED***"
        assert "pw" not in str(info)

    @pytest.mark.parametrize("schema", ["bad-name", "drop table", ""])
    def test_schema_name_validated(self, schema):
        with pytest.raises(ValueError):
            DatabaseConfig(schema_name=schema)


class TestTrackerConfig:

    def test_sample_timeout_must_be_below_interval(self):
        with pytest.raises(ValueError):
            ReporterConfig(interval_seconds=5, sample_timeout_seconds=5)

    def test_reporter_env_errors_are_configuration_errors(self, monkeypatch):
        monkeypatch.setenv("REPORTER_INTERVAL_SECONDS", "2")
        monkeypatch.setenv("REPORTER_SAMPLE_TIMEOUT_SECONDS", "3")
        with pytest.raises(ConfigurationError):
            ReporterConfig.from_environment()

    def test_retention_from_environment(self, monkeypatch):
        monkeypatch.setenv("METRICS_RETENTION_DAYS", "7")
        assert RetentionConfig.from_environment().retention_days == 7

    def test_retention_must_be_integer(self, monkeypatch):
        monkeypatch.setenv("METRICS_RETENTION_DAYS", "a week")
        with pytest.raises(ConfigurationError):
            RetentionConfig.from_environment()


class TestSingleton:

    def test_get_config_is_cached_until_reset(self, monkeypatch):
        first = get_config()
        assert get_config() is first
        monkeypatch.setenv("METRICS_RETENTION_DAYS", "3")
        assert get_config().retention.retention_days == first.retention.retention_days
        reset_config()
        assert get_config().retention.retention_days == 3

    def test_app_config_composes_domains(self):
        config = AppConfig.from_environment()
        assert config.database.backend == DatabaseBackend.SQLITE
        assert config.reporter.version

    def test_debug_config(self):
        info = debug_config()
        assert set(info) >= {"database", "counter", "reporter", "retention"}
