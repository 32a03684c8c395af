"""Custom exceptions for ToolGate.

Gate denials are returned as values by the gateway itself; the exceptions
below are raised by the store client, configuration checks and the HTTP
adapter. Each carries a machine-readable code, an HTTP status and optional
details.
"""

from __future__ import annotations

from enum import Enum
from http import HTTPStatus
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes surfaced to callers."""

    MISSING_API_KEY = "MISSING_API_KEY"
    INVALID_API_KEY = "INVALID_API_KEY"
    EXPIRED_API_KEY = "EXPIRED_API_KEY"
    REVOKED_API_KEY = "REVOKED_API_KEY"
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    MONTHLY_QUOTA_EXCEEDED = "MONTHLY_QUOTA_EXCEEDED"
    TIER_NOT_ALLOWED = "TIER_NOT_ALLOWED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # HTTP adapter
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"


ERROR_CODE_HTTP_STATUS: dict[ErrorCode, HTTPStatus] = {
    ErrorCode.MISSING_API_KEY: HTTPStatus.UNAUTHORIZED,
    ErrorCode.INVALID_API_KEY: HTTPStatus.UNAUTHORIZED,
    ErrorCode.EXPIRED_API_KEY: HTTPStatus.UNAUTHORIZED,
    ErrorCode.REVOKED_API_KEY: HTTPStatus.UNAUTHORIZED,
    ErrorCode.DAILY_LIMIT_EXCEEDED: HTTPStatus.TOO_MANY_REQUESTS,
    ErrorCode.MONTHLY_QUOTA_EXCEEDED: HTTPStatus.TOO_MANY_REQUESTS,
    ErrorCode.TIER_NOT_ALLOWED: HTTPStatus.FORBIDDEN,
    ErrorCode.RATE_LIMIT_EXCEEDED: HTTPStatus.TOO_MANY_REQUESTS,
    ErrorCode.INTERNAL_ERROR: HTTPStatus.SERVICE_UNAVAILABLE,
    ErrorCode.CONFIGURATION_ERROR: HTTPStatus.SERVICE_UNAVAILABLE,
    ErrorCode.VALIDATION_ERROR: HTTPStatus.BAD_REQUEST,
    ErrorCode.RESOURCE_NOT_FOUND: HTTPStatus.NOT_FOUND,
    ErrorCode.PERMISSION_DENIED: HTTPStatus.FORBIDDEN,
}


class ToolGateException(Exception):
    """Base exception for all ToolGate errors.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable error code.
        http_status: HTTP status code for API responses.
        details: Additional context for the caller.
    """

    message: str = "An unexpected error occurred"
    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR
    http_status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str | None = None,
        *,
        error_code: ErrorCode | None = None,
        http_status: HTTPStatus | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.__class__.message
        self.error_code = error_code or self.__class__.error_code
        self.http_status = (
            http_status
            or ERROR_CODE_HTTP_STATUS.get(self.error_code)
            or self.__class__.http_status
        )
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details if self.details else None,
            }
        }

    def __str__(self) -> str:
        return f"[{self.error_code.value}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code.value}, "
            f"http_status={self.http_status.value}, "
            f"details={self.details!r}"
            f")"
        )


# ============================================================================
# Store Exceptions
# ============================================================================


class KeyStoreError(ToolGateException):
    """The persistent key store could not be reached or failed a request."""

    message = "Key store request failed"
    error_code = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str | None = None, *, operation: str | None = None, **kwargs: Any) -> None:
        details = kwargs.pop("details", {}) or {}
        if operation:
            details["operation"] = operation
        self.operation = operation
        super().__init__(message, details=details, **kwargs)


class KeyNotFoundError(ToolGateException):
    """API key record does not exist."""

    message = "API key not found"
    error_code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, key_id: str, **kwargs: Any) -> None:
        super().__init__(details={"key_id": key_id}, **kwargs)


class ToolNotFoundError(ToolGateException):
    """No executor is registered under the requested tool name."""

    message = "Tool not found"
    error_code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, tool_name: str, available_tools: list[str], **kwargs: Any) -> None:
        super().__init__(
            f"Unknown tool: {tool_name}",
            details={"tool_name": tool_name, "available_tools": available_tools},
            **kwargs,
        )


# ============================================================================
# Configuration / Request Exceptions
# ============================================================================


class ConfigurationError(ToolGateException):
    """A required collaborator is not configured."""

    message = "Service is not configured"
    error_code = ErrorCode.CONFIGURATION_ERROR


class PermissionDeniedError(ToolGateException):
    """Caller lacks administrative access."""

    message = "Permission denied"
    error_code = ErrorCode.PERMISSION_DENIED


class ValidationError(ToolGateException):
    """Request data failed validation."""

    message = "Validation error"
    error_code = ErrorCode.VALIDATION_ERROR


# ============================================================================
# Gateway Denial
# ============================================================================


class GatewayDeniedError(ToolGateException):
    """A gate denial converted to an exception at the HTTP boundary.

    Rate-limit denials keep the limit, current usage and reset time in
    ``details`` so clients can back off.
    """

    message = "Request denied"

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)

    @property
    def retry_after_seconds(self) -> int | None:
        """Seconds until the client may retry, for rate-limit denials."""
        reset_in_ms = self.details.get("reset_in_ms")
        if reset_in_ms is None:
            return None
        return max(1, -(-int(reset_in_ms) // 1000))


def get_http_status_for_exception(exc: Exception) -> HTTPStatus:
    """Get the appropriate HTTP status code for an exception."""
    if isinstance(exc, ToolGateException):
        return exc.http_status

    exception_status_map: dict[type, HTTPStatus] = {
        ValueError: HTTPStatus.BAD_REQUEST,
        PermissionError: HTTPStatus.FORBIDDEN,
        TimeoutError: HTTPStatus.GATEWAY_TIMEOUT,
    }

    for exc_type, status in exception_status_map.items():
        if isinstance(exc, exc_type):
            return status

    return HTTPStatus.INTERNAL_SERVER_ERROR
