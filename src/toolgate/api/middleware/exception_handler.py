"""Exception handlers for FastAPI.

Every error leaves the API as
``{"success": false, "error": {"code", "message", "details"}}``. Gate denials
additionally carry rate-limit headers so clients can back off.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from toolgate.core.exceptions import (
    ErrorCode,
    GatewayDeniedError,
    ToolGateException,
    get_http_status_for_exception,
)
from toolgate.core.logging import get_correlation_id, get_logger

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = get_logger(__name__)


def create_error_response(
    error_code: str,
    message: str,
    details: dict[str, Any] | None = None,
    correlation_id: str | None = None,
) -> dict[str, Any]:
    """Create a standardized error response.

    Args:
        error_code: Machine-readable error code.
        message: Human-readable error message.
        details: Additional error details.
        correlation_id: Request correlation ID.

    Returns:
        Standardized error response dictionary.
    """
    response: dict[str, Any] = {
        "success": False,
        "error": {
            "code": error_code,
            "message": message,
        },
    }

    if details:
        response["error"]["details"] = details

    if correlation_id:
        response["correlation_id"] = correlation_id

    return response


def rate_limit_headers(exc: GatewayDeniedError) -> dict[str, str]:
    """``Retry-After`` and ``X-RateLimit-*`` headers of a rate-limit denial."""
    headers: dict[str, str] = {}
    if "limit" in exc.details:
        headers["X-RateLimit-Limit"] = str(exc.details["limit"])
    if "remaining" in exc.details:
        headers["X-RateLimit-Remaining"] = str(exc.details["remaining"])
    if "reset_at" in exc.details:
        headers["X-RateLimit-Reset"] = str(exc.details["reset_at"])
    retry_after = exc.retry_after_seconds
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return headers


async def toolgate_exception_handler(
    request: Request,
    exc: ToolGateException,
) -> JSONResponse:
    """Handle ToolGateException and subclasses."""
    correlation_id = get_correlation_id()

    logger.warning(
        "toolgate_exception",
        error_code=exc.error_code.value,
        error_message=exc.message,
        http_status=exc.http_status.value,
        path=request.url.path,
    )

    headers = rate_limit_headers(exc) if isinstance(exc, GatewayDeniedError) else None
    return JSONResponse(
        status_code=exc.http_status.value,
        content=create_error_response(
            error_code=exc.error_code.value,
            message=exc.message,
            details=exc.details if exc.details else None,
            correlation_id=correlation_id,
        ),
        headers=headers,
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle FastAPI request validation errors."""
    correlation_id = get_correlation_id()

    errors = []
    for error in exc.errors():
        field_path = " -> ".join(str(loc) for loc in error["loc"])
        errors.append(
            {
                "field": field_path,
                "message": error["msg"],
                "type": error["type"],
            }
        )

    logger.warning(
        "validation_error",
        path=request.url.path,
        error_count=len(errors),
        errors=errors[:5],
    )

    return JSONResponse(
        status_code=400,
        content=create_error_response(
            error_code=ErrorCode.VALIDATION_ERROR.value,
            message="Request validation failed",
            details={"validation_errors": errors},
            correlation_id=correlation_id,
        ),
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Map standard HTTP exceptions to the error response format."""
    correlation_id = get_correlation_id()

    status_to_error_code = {
        400: ErrorCode.VALIDATION_ERROR,
        401: ErrorCode.MISSING_API_KEY,
        403: ErrorCode.PERMISSION_DENIED,
        404: ErrorCode.RESOURCE_NOT_FOUND,
        405: ErrorCode.VALIDATION_ERROR,
        429: ErrorCode.RATE_LIMIT_EXCEEDED,
    }

    error_code = status_to_error_code.get(exc.status_code, ErrorCode.INTERNAL_ERROR)

    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            error_code=error_code.value,
            message=str(exc.detail) if exc.detail else "An error occurred",
            correlation_id=correlation_id,
        ),
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle unexpected exceptions without leaking implementation details."""
    correlation_id = get_correlation_id()
    http_status = get_http_status_for_exception(exc)

    logger.exception(
        "unhandled_exception",
        error_type=type(exc).__name__,
        error_message=str(exc),
        path=request.url.path,
    )

    return JSONResponse(
        status_code=http_status.value,
        content=create_error_response(
            error_code=ErrorCode.INTERNAL_ERROR.value,
            message="An unexpected error occurred. Please try again later.",
            correlation_id=correlation_id,
        ),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application.

    Args:
        app: The FastAPI application instance.
    """
    app.add_exception_handler(ToolGateException, toolgate_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
