"""
Custom exception classes for the application.
Provides specific error types for better error handling and debugging.
"""

from typing import Any


class BaseApplicationException(Exception):
    """Base exception class for all application exceptions."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize base exception.

        Args:
            message: Error message
            error_code: Optional error code for categorization
            details: Optional additional error details
        """
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationException(BaseApplicationException):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationException(BaseApplicationException):
    """Raised when input validation fails."""

    status_code = 400

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any
    ) -> None:
        """
        Initialize validation exception.

        Args:
            message: Error message
            field: Field that failed validation
            value: Invalid value
            **kwargs: Additional arguments
        """
        details = kwargs.get("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        kwargs["details"] = details
        self.field = field
        super().__init__(message, **kwargs)


class NotFoundException(BaseApplicationException):
    """Raised when requested resource is not found."""

    status_code = 404

    def __init__(
        self,
        message: str = "Resource not found",
        resource: str | None = None,
        identifier: str | None = None,
        **kwargs: Any
    ) -> None:
        details = kwargs.get("details", {})
        if resource:
            details["resource"] = resource
        if identifier:
            details["id"] = identifier
        kwargs["details"] = details
        super().__init__(message, **kwargs)


class DatabaseException(BaseApplicationException):
    """Raised when catalog persistence operations fail."""

    pass


class BackendException(BaseApplicationException):
    """Raised when an engine backend fails to execute or refresh."""

    def __init__(self, message: str, engine: str | None = None, **kwargs: Any) -> None:
        details = kwargs.get("details", {})
        if engine:
            details["engine"] = engine
        kwargs["details"] = details
        self.engine = engine
        super().__init__(message, **kwargs)


class BackendTimeoutException(BackendException):
    """Raised when a backend call exceeds its timeout."""

    def __init__(self, message: str, timeout_ms: int | None = None, **kwargs: Any) -> None:
        details = kwargs.get("details", {})
        if timeout_ms is not None:
            details["timeout_ms"] = timeout_ms
        kwargs["details"] = details
        super().__init__(message, **kwargs)


class CrossEngineDisabledException(BackendException):
    """Raised when the analytical engine is needed while cross-engine serving is off."""

    def __init__(self, message: str = "Cross-engine serving is disabled", **kwargs: Any) -> None:
        super().__init__(message, engine="olap", **kwargs)
