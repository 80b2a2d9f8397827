"""
Admin-token authentication middleware.

Every scheduler admin route is privileged. A request must carry one of the
configured ``admin_tokens`` either as ``Authorization: Bearer <token>`` or
as an ``X-API-Key`` header. The identity mapped to that token is stored on
``request.state.actor`` so mutating routes can log who acted.

With no tokens configured, every non-bypass request is rejected.

Bypass paths (no auth required):
  - ``/health/live``
  - ``/docs``, ``/redoc``, ``/openapi.json``

Tags:
    fetchbeat, api, middleware, authentication, admin
"""

from __future__ import annotations

import hmac
import re

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from fetchbeat.core.logging import get_logger

logger = get_logger(__name__)

# Paths that never require authentication
_BYPASS_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"^/health/live$"),
    re.compile(r"/docs$"),
    re.compile(r"/redoc$"),
    re.compile(r"/openapi\.json$"),
]


def _is_bypass(path: str) -> bool:
    """Return True if *path* should skip authentication."""
    return any(p.search(path) for p in _BYPASS_PATTERNS)


def _extract_token(request: Request) -> str | None:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return request.headers.get("X-API-Key")


def resolve_actor(tokens: dict[str, str], provided: str | None) -> str | None:
    """Map a presented token to its identity, or None if it is unknown."""
    if not provided:
        return None
    for token, identity in tokens.items():
        if hmac.compare_digest(token.encode(), provided.encode()):
            return identity
    return None


class AdminAuthMiddleware(BaseHTTPMiddleware):
    """Reject requests that lack a valid admin token.

    Parameters
    ----------
    app:
        The ASGI application to wrap.
    tokens:
        Mapping of accepted token to operator identity.
    """

    def __init__(self, app: object, tokens: dict[str, str] | None = None) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._tokens = dict(tokens or {})

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if _is_bypass(request.url.path):
            return await call_next(request)

        actor = resolve_actor(self._tokens, _extract_token(request))
        if actor is None:
            logger.warning("api.auth_rejected", path=request.url.path, method=request.method)
            return JSONResponse(
                status_code=401,
                content={
                    "type": "about:blank",
                    "title": "Unauthorized",
                    "status": 401,
                    "code": "AUTH",
                    "detail": "Missing or invalid admin token. Provide a Bearer token or X-API-Key header.",
                    "instance": str(request.url),
                    "errors": [],
                },
                headers={"WWW-Authenticate": "Bearer"},
            )

        request.state.actor = actor
        return await call_next(request)
