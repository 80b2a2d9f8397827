"""
Structured error types for fetchbeat.

Every failure the scheduler can observe is expressed as a subclass of
FetchbeatError. Each error carries a category, a retryable flag, structured
context (user, job, execution, lease holder) and an optional chained cause,
so the ledger, the circuit breaker and the health reporter can all classify
the same exception the same way.

Manifesto:
    - **Typed Error Hierarchy:** One class per failure mode the engine reacts to
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry metadata for logging and ledger entries
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       FetchbeatError                             │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError       ConflictError        ValidationError       │
        │  (retryable=True)     (CONFLICT)           (VALIDATION)          │
        │       │                   │                                      │
        │  ExternalServiceError VersionConflictError                       │
        │  CallTimeoutError     ConflictRetriesExhaustedError              │
        │  StoreUnavailableError                                           │
        │                                                                  │
        │  CircuitOpenError     ConfigError          AuthError             │
        │  (CIRCUIT)            (CONFIG)             (AUTH)                │
        │                                                                  │
        │  NotFoundError        InvalidTransitionError                     │
        │  (NOT_FOUND)          (STATE)                                    │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = ExternalServiceError("summarizer returned 503")
    >>> error.retryable
    True
    >>> error.with_context(user_id="u1", job_id="j1").context.user_id
    'u1'

Tags:
    error-handling, exception-hierarchy, retry-logic, error-context

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    The category is what ends up in the ledger's ``failure_kind`` column (via
    ``failure_kind_for``) and what the admin API reports, so the values are
    stable strings.
    """

    NETWORK = "NETWORK"
    EXTERNAL = "EXTERNAL"
    STORE = "STORE"
    CONFLICT = "CONFLICT"
    CIRCUIT = "CIRCUIT"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    AUTH = "AUTH"
    NOT_FOUND = "NOT_FOUND"
    STATE = "STATE"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured context attached to an error.

    Attributes:
        user_id: Owner of the job being processed
        job_id: Scheduled summary identifier
        execution_id: Ledger record identifier
        holder: Lease holder identity, for lease related failures
        operation: Name of the external or store operation that failed
        metadata: Additional key-value pairs
    """

    user_id: str | None = None
    job_id: str | None = None
    execution_id: str | None = None
    holder: str | None = None
    operation: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["user_id", "job_id", "execution_id", "holder", "operation"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class FetchbeatError(Exception):
    """
    Base class for all fetchbeat errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers may
    override either per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> FetchbeatError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ExternalServiceError("fetch failed").with_context(
                user_id=user_id, operation="fetch_articles"
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Usually Retryable)
# =============================================================================


class TransientError(FetchbeatError):
    """
    Temporary error that may succeed on a later tick.

    Transient errors fail the current job (the ledger records them) and count
    against the circuit breaker, but leave ``last_run`` untouched so the job
    is rediscovered while it is still inside its due window.
    """

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class ExternalServiceError(TransientError):
    """An external collaborator (fetch, summarise, synthesise) failed."""

    default_category = ErrorCategory.EXTERNAL


class CallTimeoutError(TransientError):
    """An external call exceeded its deadline."""

    default_category = ErrorCategory.EXTERNAL

    def __init__(self, message: str = "External call timed out", *, timeout: float | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class StoreUnavailableError(TransientError):
    """The shared store could not be reached or is locked."""

    default_category = ErrorCategory.STORE


# =============================================================================
# CONFLICT ERRORS
# =============================================================================


class ConflictError(FetchbeatError):
    """Base class for optimistic-concurrency failures."""

    default_category = ErrorCategory.CONFLICT
    default_retryable = False


class VersionConflictError(ConflictError):
    """A compare-and-swap write lost against a concurrent writer."""

    default_retryable = True

    def __init__(
        self,
        message: str = "Document version changed",
        *,
        expected_version: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.expected_version = expected_version


class ConflictRetriesExhaustedError(ConflictError):
    """Every save attempt lost a version race."""

    def __init__(self, message: str, *, attempts: int, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.attempts = attempts

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["attempts"] = self.attempts
        return result


# =============================================================================
# CIRCUIT / STATE ERRORS
# =============================================================================


class CircuitOpenError(FetchbeatError):
    """The circuit breaker rejected the call without running it."""

    default_category = ErrorCategory.CIRCUIT
    default_retryable = False


class InvalidTransitionError(FetchbeatError):
    """A ledger record was asked to move to a status it cannot reach."""

    default_category = ErrorCategory.STATE
    default_retryable = False


# =============================================================================
# VALIDATION / CONFIG / AUTH
# =============================================================================


class ValidationError(FetchbeatError):
    """
    Invalid data, e.g. a job spec with a malformed time or timezone.

    Never retryable.
    """

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class ConfigError(FetchbeatError):
    """Missing or invalid configuration."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class AuthError(FetchbeatError):
    """Caller is not allowed to perform an admin operation."""

    default_category = ErrorCategory.AUTH
    default_retryable = False


class NotFoundError(FetchbeatError):
    """A user, job spec or execution record does not exist."""

    default_category = ErrorCategory.NOT_FOUND
    default_retryable = False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "FetchbeatError",
    "TransientError",
    "ExternalServiceError",
    "CallTimeoutError",
    "StoreUnavailableError",
    "ConflictError",
    "VersionConflictError",
    "ConflictRetriesExhaustedError",
    "CircuitOpenError",
    "InvalidTransitionError",
    "ValidationError",
    "ConfigError",
    "AuthError",
    "NotFoundError",
]
