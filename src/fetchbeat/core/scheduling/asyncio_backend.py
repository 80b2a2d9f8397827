"""Event-loop scheduler backend.

Runs the tick callback as a single long-lived task. The tick loop, the
heartbeat, the execution queue and the admin API all share one event loop,
so the callback is awaited directly instead of being handed to
``asyncio.run`` on a separate thread.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

from fetchbeat.core.logging import get_logger
from fetchbeat.core.scheduling.protocol import BackendHealth, TickCallback

logger = get_logger(__name__)


class AsyncioSchedulerBackend:
    """Scheduler backend driven by an ``asyncio`` task.

    Example:
        >>> backend = AsyncioSchedulerBackend()
        >>> backend.start(loop.tick, interval_seconds=60)
        >>> ...
        >>> await backend.stop()
    """

    name = "asyncio"

    def __init__(self, *, tick_immediately: bool = True) -> None:
        self._tick_immediately = tick_immediately
        self._task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._interval: float = 60.0

    def start(self, tick_callback: TickCallback, interval_seconds: float = 60.0) -> None:
        if self.is_running:
            logger.warning("scheduler_backend.already_started", backend=self.name)
            return
        self._interval = interval_seconds
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._loop(tick_callback, interval_seconds), name="fetchbeat-scheduler"
        )

    async def _loop(self, tick_callback: TickCallback, interval_seconds: float) -> None:
        assert self._stop_event is not None
        logger.info("scheduler_backend.started", backend=self.name, interval_seconds=interval_seconds)
        wait_first = not self._tick_immediately
        while not self._stop_event.is_set():
            if wait_first:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval_seconds)
                    break
                except asyncio.TimeoutError:
                    pass
            wait_first = True
            self._tick_count += 1
            self._last_tick = datetime.now(timezone.utc)
            try:
                await tick_callback()
            except Exception as e:
                logger.exception("scheduler_backend.tick_failed", error=str(e))
        logger.info("scheduler_backend.stopped", backend=self.name, tick_count=self._tick_count)

    async def stop(self, timeout: float = 5.0) -> None:
        """Signal the loop to stop and wait for the in-progress tick."""
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("scheduler_backend.stop_timeout", backend=self.name)
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def health(self) -> dict[str, Any]:
        return self.get_health().to_dict()

    def get_health(self) -> BackendHealth:
        return BackendHealth(
            healthy=self.is_running,
            backend=self.name,
            tick_count=self._tick_count,
            last_tick=self._last_tick,
            extra={"interval_seconds": self._interval},
        )


__all__ = ["AsyncioSchedulerBackend"]
