"""
Custom exceptions for the wbstrack system.

Exception hierarchy:
- WbsError (base)
  ├── NotFoundError      (NOT_FOUND)
  ├── ConflictError      (CONFLICT)
  ├── ValidationError    (VALIDATION)
  ├── StorageError       (STORAGE)
  └── ConfigurationError (CONFIGURATION)

Callers translate ``error_code`` into user-facing messages; the engine only
attaches a short message and a context dictionary.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Error categories exposed to callers."""
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION = "VALIDATION"
    STORAGE = "STORAGE"
    CONFIGURATION = "CONFIGURATION"


class WbsError(Exception):
    """Base exception for all wbstrack errors."""

    kind: Optional[ErrorKind] = None

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or (self.kind.value if self.kind else None)
        self.context = context or {}

    def __str__(self) -> str:
        base_msg = self.message
        if self.error_code:
            base_msg = f"[{self.error_code}] {base_msg}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg = f"{base_msg} (Context: {context_str})"
        return base_msg


class NotFoundError(WbsError):
    """A referenced task, artifact or dependency does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if entity_type:
            context["entity_type"] = entity_type
        if entity_id:
            context["entity_id"] = entity_id
        super().__init__(message, context=context, **kwargs)


class ConflictError(WbsError):
    """The stored version moved since the caller read it."""

    kind = ErrorKind.CONFLICT

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if entity_id:
            context["entity_id"] = entity_id
        if expected_version is not None:
            context["expected_version"] = expected_version
        if actual_version is not None:
            context["actual_version"] = actual_version
        super().__init__(message, context=context, **kwargs)


class ValidationError(WbsError):
    """Input rejected before any write (self-parent, cycles, missing refs)."""

    kind = ErrorKind.VALIDATION

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)[:100]
        super().__init__(message, context=context, **kwargs)


class StorageError(WbsError):
    """Database failure; the surrounding transaction has been rolled back."""

    kind = ErrorKind.STORAGE

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        query: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if table:
            context["table"] = table
        if query:
            context["query"] = query[:100] + "..." if len(query) > 100 else query
        super().__init__(message, context=context, **kwargs)


class ConfigurationError(WbsError):
    """Invalid or unreadable configuration."""

    kind = ErrorKind.CONFIGURATION

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_file: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", None) or {}
        if config_key:
            context["config_key"] = config_key
        if config_file:
            context["config_file"] = config_file
        super().__init__(message, context=context, **kwargs)
