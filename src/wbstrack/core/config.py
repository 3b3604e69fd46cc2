"""
Configuration management for wbstrack based on Pydantic Settings.

Supported sources:
- Environment variables (``WBS_DB_*``, ``WBS_LOG_*``, ``WBS_*``)
- .env files
- YAML configuration files
"""

from pathlib import Path
from typing import Any, Dict, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from wbstrack.core.exceptions import ConfigurationError

MEMORY_DB = ":memory:"


class DatabaseConfig(BaseSettings):
    """SQLite store configuration."""

    data_dir: str = Field(default="./data", description="Directory holding the database file")
    filename: str = Field(default="wbs.db", description="Database file name, or :memory:")
    max_connections: int = Field(default=5, ge=1, description="Connection pool size")
    echo: bool = Field(default=False, description="Echo SQL statements")

    @property
    def db_path(self) -> str:
        """Absolute database path (or ``:memory:``)."""
        if self.filename == MEMORY_DB:
            return MEMORY_DB
        return str(Path(self.data_dir).expanduser().resolve() / self.filename)

    model_config = {"env_prefix": "WBS_DB_"}


class LoggingConfig(BaseSettings):
    """Structured logging configuration."""

    level: str = Field(default="INFO", description="Logging level")
    format: str = Field(default="console", description="Renderer: console or json")

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        fmt = v.lower()
        if fmt not in {"console", "json"}:
            raise ValueError("Log format must be 'console' or 'json'")
        return fmt

    model_config = {"env_prefix": "WBS_LOG_"}


class WbsConfig(BaseSettings):
    """Main wbstrack configuration."""

    environment: str = Field(default="development", description="development/production/testing")
    debug: bool = Field(default=False, description="Enable debug mode")

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "WbsConfig":
        """Load configuration from a YAML file."""
        import yaml

        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {yaml_path}",
                config_file=str(yaml_path),
            )

        with open(yaml_path, "r", encoding="utf-8") as f:
            try:
                config_data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(
                    f"Invalid YAML configuration: {e}",
                    config_file=str(yaml_path),
                ) from e

        if not isinstance(config_data, dict):
            raise ConfigurationError(
                "Configuration root must be a mapping",
                config_file=str(yaml_path),
            )
        return cls(**config_data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary."""
        return self.model_dump()

    model_config = {
        "env_prefix": "WBS_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "env_nested_delimiter": "__",
        "extra": "ignore",
    }
