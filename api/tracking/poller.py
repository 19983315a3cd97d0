"""
Recurring poll timer.

Runs a cycle immediately, then every POLL_INTERVAL_S. Cycles run back to back
inside one task, so ticks never overlap; a tick that finds a table busy (e.g.
an admin force-check) skips that table.

`stop()` lets the in-flight cycle finish within the grace period, then
cancels it.
"""

from __future__ import annotations

import asyncio
import logging

from .config import DEFAULT_POLL_INTERVAL_S, DEFAULT_SHUTDOWN_GRACE_S
from .service import TrackingService

logger = logging.getLogger(__name__)


class Poller:
    def __init__(
        self,
        service: TrackingService,
        *,
        interval_s: float = DEFAULT_POLL_INTERVAL_S,
        grace_s: float = DEFAULT_SHUTDOWN_GRACE_S,
    ) -> None:
        self.service = service
        self.interval_s = interval_s
        self.grace_s = grace_s
        self._stopping = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name="tracking-poller")
        logger.info("poller_started interval_s=%s", self.interval_s)

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.service.run_cycle()
            except Exception:
                logger.exception("poll_cycle_failed")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                pass

    async def stop(self) -> None:
        self._stopping.set()
        task, self._task = self._task, None
        if task is None or task.done():
            return

        try:
            # wait_for cancels the task itself once the grace period runs out.
            await asyncio.wait_for(task, timeout=self.grace_s)
        except asyncio.TimeoutError:
            logger.warning("poller_stop_timeout grace_s=%s in_flight_cycle_cancelled", self.grace_s)
        except asyncio.CancelledError:
            pass
        logger.info("poller_stopped")
