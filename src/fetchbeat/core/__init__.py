"""Core primitives: settings, logging, errors, storage and job models."""

from fetchbeat.core.errors import (
    ConfigError,
    ConflictError,
    ErrorCategory,
    FetchbeatError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from fetchbeat.core.logging import configure_logging, get_logger
from fetchbeat.core.models import JobSpec, UserState
from fetchbeat.core.settings import FetchbeatSettings, get_settings

__all__ = [
    "ConfigError",
    "ConflictError",
    "ErrorCategory",
    "FetchbeatError",
    "FetchbeatSettings",
    "JobSpec",
    "NotFoundError",
    "TransientError",
    "UserState",
    "ValidationError",
    "configure_logging",
    "get_logger",
    "get_settings",
]
