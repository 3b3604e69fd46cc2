"""Configuration and logging setup tests."""

from pathlib import Path

import pytest
import structlog

from wbstrack.core.config import DatabaseConfig, LoggingConfig, WbsConfig
from wbstrack.core.exceptions import ConfigurationError, ErrorKind, NotFoundError
from wbstrack.core.logging import configure_logging, get_logger


class TestDatabaseConfig:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("WBS_DB_FILENAME", raising=False)
        config = DatabaseConfig()
        assert config.filename == "wbs.db"
        assert config.max_connections == 5
        assert Path(config.db_path).name == "wbs.db"
        assert Path(config.db_path).is_absolute()

    def test_memory_path(self):
        assert DatabaseConfig(filename=":memory:").db_path == ":memory:"

    def test_env_prefix(self, monkeypatch, tmp_path):
        monkeypatch.setenv("WBS_DB_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("WBS_DB_MAX_CONNECTIONS", "3")
        config = DatabaseConfig()
        assert config.max_connections == 3
        assert config.db_path == str(tmp_path.resolve() / "wbs.db")


class TestLoggingConfig:
    def test_level_is_normalized(self):
        assert LoggingConfig(level="debug").level == "DEBUG"

    def test_rejects_unknown_format(self):
        with pytest.raises(ValueError):
            LoggingConfig(format="xml")


class TestWbsConfig:
    def test_from_yaml(self, tmp_path):
        path = tmp_path / "wbs.yaml"
        path.write_text(
            "environment: testing\n"
            "database:\n"
            "  filename: custom.db\n"
            "logging:\n"
            "  format: json\n",
            encoding="utf-8",
        )
        config = WbsConfig.from_yaml(path)
        assert config.environment == "testing"
        assert config.database.filename == "custom.db"
        assert config.logging.format == "json"
        assert config.to_dict()["database"]["filename"] == "custom.db"

    def test_from_yaml_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            WbsConfig.from_yaml(tmp_path / "absent.yaml")
        assert exc_info.value.error_code == ErrorKind.CONFIGURATION.value

    def test_from_yaml_rejects_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            WbsConfig.from_yaml(path)


class TestLogging:
    def test_configure_and_bind(self):
        configure_logging(LoggingConfig(level="INFO", format="json"))
        logger = get_logger("engine")
        logger.info("configured", check=True)
        assert structlog.is_configured()

    def test_module_loggers_carry_component(self):
        from wbstrack.tasks import engine

        with structlog.testing.capture_logs() as logs:
            engine.logger.info("status evaluated", task_id="t1")
            get_logger().info("plain")
        assert logs[0]["component"] == "engine"
        assert logs[0]["task_id"] == "t1"
        assert "component" not in logs[1]


class TestExceptions:
    def test_str_includes_code_and_context(self):
        error = NotFoundError("Task not found", entity_type="task", entity_id="t1")
        assert str(error) == "[NOT_FOUND] Task not found (Context: entity_type=task, entity_id=t1)"
        assert error.kind is ErrorKind.NOT_FOUND
