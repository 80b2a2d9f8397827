"""
Error handlers: map ``FetchbeatError`` categories to RFC 7807 responses.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from fetchbeat.api.schemas.common import ErrorDetail, ProblemDetail
from fetchbeat.core.errors import ErrorCategory, FetchbeatError, ValidationError
from fetchbeat.core.logging import get_logger

logger = get_logger(__name__)

# ── Error category → HTTP status mapping ─────────────────────────────────

CATEGORY_TO_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.CONFLICT: 409,
    ErrorCategory.STATE: 409,
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.AUTH: 401,
    ErrorCategory.STORE: 503,
    ErrorCategory.CIRCUIT: 503,
    ErrorCategory.NETWORK: 502,
    ErrorCategory.EXTERNAL: 502,
    ErrorCategory.CONFIG: 500,
    ErrorCategory.INTERNAL: 500,
}


def status_for_category(category: ErrorCategory) -> int:
    """Resolve an error category to HTTP status, defaulting to 500."""
    return CATEGORY_TO_STATUS.get(category, 500)


def problem_response(
    *,
    status: int,
    title: str,
    code: str = "INTERNAL",
    detail: str = "",
    instance: str = "",
    errors: list[dict[str, Any]] | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(
        title=title,
        status=status,
        code=code,
        detail=detail,
        instance=instance,
    )
    if errors:
        body.errors = [ErrorDetail(**e) for e in errors]
    return JSONResponse(status_code=status, content=body.model_dump())


async def fetchbeat_error_handler(request: Request, exc: FetchbeatError) -> JSONResponse:
    """Render a domain error with the status its category implies."""
    status = status_for_category(exc.category)
    errors = None
    if isinstance(exc, ValidationError) and exc.field:
        errors = [{"code": exc.category.value, "message": exc.message, "field": exc.field}]
    logger.info(
        "api.request_failed",
        path=request.url.path,
        status=status,
        category=exc.category.value,
        error=exc.message,
    )
    headers = None
    if exc.retry_after is not None:
        headers = {"Retry-After": str(int(exc.retry_after))}
    response = problem_response(
        status=status,
        title=exc.message,
        code=exc.category.value,
        instance=str(request.url),
        errors=errors,
    )
    if headers:
        response.headers.update(headers)
    return response


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: returns 500 with ProblemDetail."""
    logger.exception("api.unhandled_error", path=request.url.path, error=str(exc))
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail=str(exc) if request.app.state.settings.debug else "An unexpected error occurred.",
        instance=str(request.url),
    )
