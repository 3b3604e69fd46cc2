"""
Core module: configuration, exceptions and logging setup.
"""

from wbstrack.core.config import DatabaseConfig, LoggingConfig, WbsConfig
from wbstrack.core.exceptions import (
    ConfigurationError,
    ConflictError,
    ErrorKind,
    NotFoundError,
    StorageError,
    ValidationError,
    WbsError,
)

__all__ = [
    "DatabaseConfig",
    "LoggingConfig",
    "WbsConfig",
    "ErrorKind",
    "WbsError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "StorageError",
    "ConfigurationError",
]
