"""API middleware."""

from fetchbeat.api.middleware.auth import AdminAuthMiddleware
from fetchbeat.api.middleware.request_id import RequestIDMiddleware

__all__ = ["AdminAuthMiddleware", "RequestIDMiddleware"]
