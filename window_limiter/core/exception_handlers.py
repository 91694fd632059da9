"""Global exception handlers for consistent error responses.

Design:
- RateLimitExceededAppError -> 429 with Retry-After
- ConfigurationAppError -> 500 (the service is misconfigured, not the client)
- Other AppError -> 400
- Unexpected Exception -> generic 500 (safety net)
- All responses include request_id for distributed tracing
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from window_limiter.core.errors import AppError, ConfigurationAppError, RateLimitExceededAppError
from window_limiter.core.logging import get_request_id

logger = logging.getLogger(__name__)


def _status_for(exc: AppError) -> int:
    if isinstance(exc, RateLimitExceededAppError):
        return 429
    if isinstance(exc, ConfigurationAppError):
        return 500
    return 400


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with consistent JSON format.

    All responses carry ``error.code``, ``error.message``,
    ``error.request_id`` and, when present, ``error.details``.
    """
    status_code = _status_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
        },
    )

    error_content = {
        "code": exc.code,
        "message": exc.message,
        "request_id": get_request_id(),
    }
    if exc.details:
        error_content["details"] = exc.details

    headers: dict[str, str] = {}
    if isinstance(exc, RateLimitExceededAppError):
        headers["Retry-After"] = str(int((exc.details or {}).get("retry_after", 0)))

    return JSONResponse(
        status_code=status_code,
        content={"error": error_content},
        headers=headers or None,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors.

    Logs the failure for debugging while returning a generic message, so no
    stack trace reaches the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "internal_server_error",
                "message": "An unexpected error occurred. Please try again later.",
                "request_id": get_request_id(),
            }
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Specific handlers are registered before the general fallback.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(Exception)(general_exception_handler)
