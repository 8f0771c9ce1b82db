"""
Infrastructure exceptions for the perk boost engine.

These cover failures that are not the player's doing: the store being
unreachable or contended, and bad configuration. Domain rejections
(ownership, validation, inactive perks) live in
`perkboost.modules.shared.exceptions`; both hierarchies derive from
`StructuredError`.

Every exception carries:
- ``message``: human-readable description
- ``details``: structured context for logs
- ``severity``: drives the log level and alerting
- ``is_retryable``: whether repeating the whole operation may succeed
- ``error_code``: short, stable identifier for callers
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    DEBUG = "debug"
    INFO = "info"  # expected rejections, e.g. a player without stock
    WARNING = "warning"  # handled, e.g. lock contention or bad catalog data
    ERROR = "error"
    CRITICAL = "critical"  # the engine cannot start or run


class StructuredError(Exception):
    """
    Exception carrying the metadata fields listed above.

    Subclasses set ``DEFAULT_SEVERITY`` / ``DEFAULT_RETRYABLE``; callers may
    override either per instance.
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message = message
        self.details: Dict[str, Any] = details or {}
        self.severity = severity or self.DEFAULT_SEVERITY
        self.is_retryable = self.DEFAULT_RETRYABLE if is_retryable is None else is_retryable
        self.error_code = error_code or type(self).__name__
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        if not self.details:
            return f"[{self.error_code}] {self.message}"
        return f"[{self.error_code}] {self.message} | Details: {self.details}"


class BoostInfrastructureException(StructuredError):
    """Base class for infrastructure failures."""


class ConfigurationError(BoostInfrastructureException):
    """A configuration key is missing or holds a value its validator rejects."""

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details={"config_key": config_key, "message": message},
            error_code="CONFIG_ERROR",
        )


class _StoreFailure(BoostInfrastructureException):
    """Shared shape for failures wrapping a driver or ORM exception."""

    ERROR_CODE = "STORE_ERROR"
    DESCRIPTION = "Store failure"
    DEFAULT_CAUSE = "unknown cause"

    def __init__(self, operation: str, original_error: Optional[Exception] = None) -> None:
        self.operation = operation
        self.original_error = original_error
        cause = str(original_error) if original_error is not None else self.DEFAULT_CAUSE
        super().__init__(
            f"{self.DESCRIPTION} during {operation}: {cause}",
            details={
                "operation": operation,
                "error": cause,
                "error_type": type(original_error).__name__ if original_error else None,
            },
            error_code=self.ERROR_CODE,
        )


class DatabaseError(_StoreFailure):
    """
    The database layer itself is unusable (schema creation, engine setup).

    Failures of a single business operation are `PersistenceError` or
    `ConcurrencyConflictError` instead.
    """

    DEFAULT_RETRYABLE = True
    ERROR_CODE = "DATABASE_ERROR"
    DESCRIPTION = "Database error"


class PersistenceError(_StoreFailure):
    """
    The store failed inside a business operation.

    The transaction was rolled back before this is raised, so no partial
    inventory or boost change remains.
    """

    ERROR_CODE = "PERSISTENCE_ERROR"
    DESCRIPTION = "Persistence failure"


class ConcurrencyConflictError(_StoreFailure):
    """
    Row or file lock contention outlasted the retry budget.

    Safe to retry the whole activation, consume or resolution call.
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True
    ERROR_CODE = "CONCURRENCY_CONFLICT"
    DESCRIPTION = "Concurrency conflict"
    DEFAULT_CAUSE = "lock contention"

    def __init__(
        self,
        operation: str,
        original_error: Optional[Exception] = None,
        attempts: int = 1,
    ) -> None:
        self.attempts = attempts
        super().__init__(operation, original_error)
        self.message = f"{self.message} (after {attempts} attempt(s))"
        self.details["attempts"] = attempts
        self.args = (self.message,)


def is_transient_error(exc: BaseException) -> bool:
    """True when repeating the failed operation may succeed."""
    return isinstance(exc, BoostInfrastructureException) and exc.is_retryable


def get_error_severity(exc: BaseException) -> ErrorSeverity:
    """
    Severity of ``exc``; domain exceptions expose the same attribute.
    Anything else counts as ERROR.
    """
    severity = getattr(exc, "severity", None)
    return severity if isinstance(severity, ErrorSeverity) else ErrorSeverity.ERROR


def should_alert(exc: BaseException) -> bool:
    return get_error_severity(exc) in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
