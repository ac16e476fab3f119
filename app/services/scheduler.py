"""
Periodic liquidation trigger.

Runs LiquidationEngine.run_cycle() every `interval_seconds` on the event loop,
pushing the synchronous cycle onto a worker thread so request handling is
never blocked. Started/stopped by the FastAPI lifespan in app/main.py when
LIQUIDATION_SCHEDULER_ENABLED=true; a cron job hitting
POST /v1/liquidation/run-cycle works just as well.
"""
from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any, Optional

import structlog

logger = structlog.get_logger()


class LiquidationScheduler:
    def __init__(self, run_cycle: Callable[[], Any], interval_seconds: float):
        self._run_cycle = run_cycle
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("liquidation_scheduler_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("liquidation_scheduler_stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.to_thread(self._run_cycle)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("liquidation_scheduler_cycle_failed", error=str(e))
            await asyncio.sleep(self._interval)
