"""
FastAPI application factory for the scheduler admin API.

``create_app()`` wires middleware, routers, error handlers and the
scheduler lifespan into a single ``FastAPI`` instance. The same process
that serves the API also runs the tick loop when collaborators are
configured, so operator actions act on the live queue and breaker.

Tags:
    fetchbeat, api, app-factory, FastAPI

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from fetchbeat import __version__
from fetchbeat.api.deps import get_settings
from fetchbeat.api.middleware.auth import AdminAuthMiddleware
from fetchbeat.api.middleware.errors import fetchbeat_error_handler, unhandled_exception_handler
from fetchbeat.api.middleware.request_id import RequestIDMiddleware
from fetchbeat.core.errors import FetchbeatError
from fetchbeat.core.logging import get_logger
from fetchbeat.core.settings import FetchbeatSettings
from fetchbeat.runtime import SchedulerRuntime, create_runtime

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build (or adopt) the runtime, start ticking, and stop cleanly on shutdown."""
    settings: FetchbeatSettings = app.state.settings
    owns_runtime = app.state.runtime is None
    if owns_runtime:
        app.state.runtime = create_runtime(settings)
    runtime: SchedulerRuntime = app.state.runtime

    logger.info(
        "api.starting",
        version=app.version,
        instance_id=settings.instance_id,
        can_execute=runtime.can_execute,
    )
    started = False
    if app.state.start_scheduler and runtime.can_execute:
        runtime.start()
        started = True
    try:
        yield
    finally:
        if started:
            await runtime.stop()
        if owns_runtime:
            runtime.close()
            app.state.runtime = None
        logger.info("api.stopped", instance_id=settings.instance_id)


def create_app(
    *,
    settings: FetchbeatSettings | None = None,
    runtime: SchedulerRuntime | None = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : FetchbeatSettings | None
        Override settings (useful for testing). When ``None`` the cached
        singleton from :func:`get_settings` is used.
    runtime : SchedulerRuntime | None
        Pre-built runtime. The app does not close a runtime it was given.
    start_scheduler : bool
        Start the tick loop in the lifespan when collaborators are present.
    """
    settings = settings or (runtime.settings if runtime is not None else get_settings())

    app = FastAPI(
        title="fetchbeat scheduler",
        version=__version__,
        lifespan=lifespan,
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
    )

    app.state.settings = settings
    app.state.runtime = runtime
    app.state.start_scheduler = start_scheduler

    app.dependency_overrides[get_settings] = lambda: settings

    # ── Middleware (last added runs first) ───────────────────────────
    app.add_middleware(AdminAuthMiddleware, tokens=settings.admin_tokens)
    app.add_middleware(RequestIDMiddleware)

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(FetchbeatError, fetchbeat_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    from fetchbeat.api.routers import health, scheduler

    app.include_router(health.router)
    app.include_router(scheduler.router, prefix=settings.api_prefix, tags=["scheduler"])

    return app
