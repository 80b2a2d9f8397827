"""Liveness probe for container health checks. Requires no credentials."""

from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health/live")
async def liveness(request: Request) -> dict[str, str]:
    """Always 200 while the process is serving requests."""
    settings = request.app.state.settings
    return {"status": "alive", "instance_id": settings.instance_id}
