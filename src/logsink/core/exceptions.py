"""
Custom exceptions for LogSink service.

Provides structured error handling with appropriate HTTP status codes
and error details for API responses. The internal errors at the bottom
never cross the worker boundary; they are converted to a ``LogResult``.
"""

from typing import Any, Dict, Optional


class LogSinkException(Exception):
    """Base exception for LogSink service."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class ValidationError(LogSinkException):
    """Raised when the request body cannot be decoded."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=400,
            error_code="validation_error",
            details=details,
        )


class AuthenticationError(LogSinkException):
    """Raised when authentication fails."""

    def __init__(self, message: str = "Invalid token") -> None:
        super().__init__(
            message=message,
            status_code=401,
            error_code="authentication_error",
        )


class NotFoundError(LogSinkException):
    """Raised for unknown paths, bad app names and unconfigured loggers."""

    def __init__(self, message: str = "Not Found", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=404,
            error_code="not_found",
            details=details,
        )


class MethodNotAllowedError(LogSinkException):

    def __init__(self, message: str = "log accepts POST only") -> None:
        super().__init__(
            message=message,
            status_code=405,
            error_code="method_not_allowed",
        )


class PayloadTooLargeError(LogSinkException):

    def __init__(self, message: str = "Request too large", max_bytes: Optional[int] = None) -> None:
        details = {}
        if max_bytes:
            details["max_bytes"] = max_bytes

        super().__init__(
            message=message,
            status_code=413,
            error_code="payload_too_large",
            details=details,
        )


class UnsupportedMediaTypeError(LogSinkException):

    def __init__(self, message: str = "Send me JSON!") -> None:
        super().__init__(
            message=message,
            status_code=415,
            error_code="unsupported_media_type",
        )


class InternalError(LogSinkException):
    """Raised when a worker reports a server-side failure."""

    def __init__(self, message: str = "Internal Server Error", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="internal_error",
            details=details,
        )


class ConfigurationError(LogSinkException):
    """Raised at startup when the service settings are unusable."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="configuration_error",
            details=details,
        )


class ConfigNotFoundError(LogSinkException):
    """No configuration record exists for an application."""

    def __init__(self, appname: str, path: str) -> None:
        super().__init__(
            message=f"No configuration for '{appname}'",
            status_code=404,
            error_code="config_not_found",
            details={"appname": appname, "path": path},
        )


class ConfigParseError(LogSinkException):
    """A configuration record exists but cannot be decoded."""

    def __init__(self, appname: str, path: str, reason: str) -> None:
        super().__init__(
            message=f"Invalid configuration for '{appname}': {reason}",
            status_code=404,
            error_code="config_parse_error",
            details={"appname": appname, "path": path},
        )


class LogFileError(LogSinkException):
    """Raised when a log file operation fails."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            status_code=500,
            error_code="logfile_error",
            details=details,
        )
