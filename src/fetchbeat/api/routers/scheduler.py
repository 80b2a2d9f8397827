"""
Scheduler admin router: observe and steer the scheduling engine.

GET    /scheduler/health
GET    /scheduler/stats
GET    /scheduler/executions
GET    /scheduler/circuit-breaker
POST   /scheduler/circuit-breaker/reset
GET    /scheduler/queue
POST   /scheduler/queue/clear
GET    /scheduler/lock
POST   /scheduler/lock/release
POST   /scheduler/lock/cleanup
POST   /scheduler/jobs/{user_id}/{job_id}/execute

Every route requires an admin token. Mutating routes log the acting
operator. Routes are ``async`` because the queue and tick loop they touch
live on the server's event loop.
"""

from __future__ import annotations

import time
from typing import Any

from fastapi import APIRouter, Path, Query, status

from fetchbeat.api.deps import Actor, Pagination, Runtime
from fetchbeat.api.schemas.common import PagedResponse, PageMeta, SuccessResponse
from fetchbeat.api.schemas.scheduler import ActionResult, ExecutionSchema, ReleaseLockBody
from fetchbeat.core.logging import get_logger
from fetchbeat.execution.models import ExecutionStatus

logger = get_logger(__name__)

router = APIRouter(prefix="/scheduler")


def _elapsed(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


# ── Observation ──────────────────────────────────────────────────────────


@router.get("/health", response_model=SuccessResponse[dict[str, Any]])
async def get_health(
    runtime: Runtime,
    hours: int | None = Query(None, ge=1, le=24 * 30, description="Stats window in hours"),
):
    """Scored health snapshot of ledger, breaker, queue, lease and tick loop.

    Example:
        GET /api/v1/scheduler/health

        Response:
        {
            "data": {
                "score": 100,
                "status": "healthy",
                "issues": [],
                "metrics": {"executions": {...}, "circuit_breaker": {...}, ...}
            }
        }
    """
    started = time.perf_counter()
    report = runtime.reporter.report(hours)
    return SuccessResponse(data=report.to_dict(), elapsed_ms=_elapsed(started))


@router.get("/stats", response_model=SuccessResponse[dict[str, Any]])
async def get_stats(
    runtime: Runtime,
    hours: int = Query(24, ge=1, le=24 * 30, description="Stats window in hours"),
    top: int = Query(10, ge=1, le=100, description="Number of users to list"),
):
    """Execution totals for the window plus the busiest users."""
    started = time.perf_counter()
    data = {
        "executions": runtime.ledger.get_stats(hours),
        "by_user": runtime.ledger.stats_by_user(hours, limit=top),
        "scheduler": runtime.scheduler.stats.to_dict(),
    }
    return SuccessResponse(data=data, elapsed_ms=_elapsed(started))


@router.get("/executions", response_model=PagedResponse[ExecutionSchema])
async def list_executions(
    runtime: Runtime,
    pagination: Pagination,
    status_filter: ExecutionStatus | None = Query(None, alias="status", description="Filter by status"),
    user_id: str | None = Query(None, description="Filter by user"),
):
    """Recent execution records, newest first.

    Example:
        GET /api/v1/scheduler/executions?status=failed&page_size=20
    """
    started = time.perf_counter()
    records = runtime.ledger.list_recent(
        status=status_filter,
        user_id=user_id,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    total = runtime.ledger.count(status=status_filter, user_id=user_id)
    return PagedResponse(
        data=[ExecutionSchema(**r.to_dict()) for r in records],
        page=PageMeta.from_result(total, pagination.limit, pagination.offset),
        elapsed_ms=_elapsed(started),
    )


@router.get("/circuit-breaker", response_model=SuccessResponse[dict[str, Any]])
async def get_circuit_breaker(runtime: Runtime):
    """Breaker state, counters and time until the next trial."""
    return SuccessResponse(data=runtime.breaker.get_status())


@router.get("/queue", response_model=SuccessResponse[dict[str, Any]])
async def get_queue(runtime: Runtime):
    """Queue length, running workers and processing counters."""
    return SuccessResponse(data=runtime.queue.get_status())


@router.get("/lock", response_model=SuccessResponse[dict[str, Any]])
async def get_lock(runtime: Runtime):
    """Current lease holder, time remaining and heartbeat health."""
    data = {**runtime.lease.status(), "instance_id": runtime.settings.instance_id}
    return SuccessResponse(data=data)


# ── Operator actions ─────────────────────────────────────────────────────


@router.post("/circuit-breaker/reset", response_model=SuccessResponse[ActionResult])
async def reset_circuit_breaker(runtime: Runtime, actor: Actor):
    """Force the breaker back to CLOSED. Only affects this process."""
    previous = runtime.breaker.state
    runtime.breaker.reset(actor=actor)
    logger.warning("api.circuit_breaker_reset", actor=actor, previous_state=previous.value)
    return SuccessResponse(
        data=ActionResult(action="circuit_breaker.reset", actor=actor, detail=f"was {previous.value}")
    )


@router.post("/queue/clear", response_model=SuccessResponse[ActionResult])
async def clear_queue(runtime: Runtime, actor: Actor):
    """Drop every waiting entry. Running jobs are not interrupted."""
    removed = runtime.queue.clear(actor=actor)
    logger.warning("api.queue_cleared", actor=actor, removed=removed)
    return SuccessResponse(data=ActionResult(action="queue.clear", actor=actor, affected=removed))


@router.post("/lock/release", response_model=SuccessResponse[ActionResult])
async def release_lock(body: ReleaseLockBody, runtime: Runtime, actor: Actor):
    """Force-release the lease held by ``holder``.

    The holder notices on its next renewal and steps down.
    """
    released = runtime.lease.force_release(body.holder, actor=actor)
    return SuccessResponse(
        data=ActionResult(
            action="lock.release",
            actor=actor,
            affected=int(released),
            detail="released" if released else f"{body.holder} does not hold the lease",
        )
    )


@router.post("/lock/cleanup", response_model=SuccessResponse[ActionResult])
async def cleanup_lock(runtime: Runtime, actor: Actor):
    """Delete expired lease rows."""
    removed = runtime.lease.cleanup_expired()
    logger.info("api.lock_cleanup", actor=actor, removed=removed)
    return SuccessResponse(data=ActionResult(action="lock.cleanup", actor=actor, affected=removed))


@router.post(
    "/jobs/{user_id}/{job_id}/execute",
    response_model=SuccessResponse[ExecutionSchema],
    status_code=status.HTTP_202_ACCEPTED,
)
async def execute_job(
    runtime: Runtime,
    actor: Actor,
    user_id: str = Path(..., description="Owner of the job"),
    job_id: str = Path(..., description="Scheduled summary id"),
):
    """Run one job now on this instance.

    The run goes through the ledger, breaker and queue like a scheduled
    run but is tagged ``manual`` and leaves ``last_run`` untouched. When the
    breaker is open the returned record is already ``failed`` with
    ``failure_kind = circuit_open``.

    Raises:
        404 NOT_FOUND: Unknown user or job.
        409 CONFLICT: The job is already queued or running here.
        500 CONFIG: This instance has no collaborators configured.

    Example:
        POST /api/v1/scheduler/jobs/u-1/daily/execute
    """
    runtime.require_executor()
    record = await runtime.scheduler.trigger(user_id, job_id, actor=actor)
    return SuccessResponse(data=ExecutionSchema(**record.to_dict()))
