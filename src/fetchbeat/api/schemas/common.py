"""
Common API schemas: response envelopes and RFC 7807 errors.

Every admin endpoint returns either :class:`SuccessResponse` or
:class:`PagedResponse` on success, and :class:`ProblemDetail` on failure.

Response Envelope Conventions:
    - 2xx responses use ``SuccessResponse[T]`` or ``PagedResponse[T]``
    - 4xx/5xx responses use ``ProblemDetail`` (RFC 7807)
    - ``elapsed_ms`` tracks server-side processing time

Doc-Types: API_REFERENCE
"""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


# ── RFC 7807 Problem Detail ─────────────────────────────────────────────


class ErrorDetail(BaseModel):
    """Structured error detail for field-level errors."""

    code: str = Field(description="Machine-readable error code (e.g., 'VALIDATION')")
    message: str = Field(description="Human-readable error description")
    field: str | None = Field(default=None, description="Field path if error is field-specific")


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs».

    Error Codes:
        - ``NOT_FOUND`` (404): user, job or execution does not exist
        - ``VALIDATION`` (400): invalid input
        - ``CONFLICT`` (409): job already queued or running, version conflict
        - ``AUTH`` (401): missing or unknown admin token
        - ``STORE`` (503): store unavailable, retry later
        - ``INTERNAL`` (500): unexpected server error

    Example:
        {
            "type": "about:blank",
            "title": "Job daily not found for user u-1",
            "status": 404,
            "code": "NOT_FOUND",
            "detail": "",
            "instance": "/api/v1/scheduler/jobs/u-1/daily/execute",
            "errors": []
        }
    """

    type: str = Field(default="about:blank", description="Error type URI (usually 'about:blank')")
    title: str = Field(description="Short human-readable error summary")
    status: int = Field(description="HTTP status code")
    code: str = Field(default="INTERNAL", description="Error category")
    detail: str = Field(default="", description="Human-readable explanation of the error")
    instance: str = Field(default="", description="URI of the failing request")
    errors: list[ErrorDetail] = Field(
        default_factory=list,
        description="List of field-level error details",
    )


# ── Success Envelopes ────────────────────────────────────────────────────


class PageMeta(BaseModel):
    """Pagination metadata for list responses."""

    total: int = Field(description="Total items across all pages")
    limit: int = Field(description="Items per page (requested)")
    offset: int = Field(description="Current offset (0-based)")
    has_more: bool = Field(description="True if more pages exist after current")
    page: int = Field(default=1, description="Current page number (1-indexed)")
    total_pages: int = Field(default=1, description="Total number of pages")

    @classmethod
    def from_result(cls, total: int, limit: int, offset: int) -> PageMeta:
        """Factory that computes the derived fields."""
        return cls(
            total=total,
            limit=limit,
            offset=offset,
            has_more=(offset + limit) < total,
            page=(offset // limit) + 1,
            total_pages=max(1, (total + limit - 1) // limit),
        )


class SuccessResponse(BaseModel, Generic[T]):
    """Standard success envelope for single-item responses."""

    data: T = Field(description="Response payload (type varies by endpoint)")
    elapsed_ms: float = Field(default=0.0, description="Server-side processing time in milliseconds")
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-fatal warnings",
    )


class PagedResponse(BaseModel, Generic[T]):
    """Paged success envelope for list responses."""

    data: list[T] = Field(description="List of items for this page")
    page: PageMeta = Field(description="Pagination metadata")
    elapsed_ms: float = Field(default=0.0, description="Server-side processing time in milliseconds")
    warnings: list[str] = Field(
        default_factory=list,
        description="Non-fatal warnings",
    )
