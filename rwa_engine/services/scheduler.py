"""Periodic refresh of derived metrics, owned by the host process."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from .calculation_engine import CalculationEngine

logger = logging.getLogger(__name__)

ERROR_BACKOFF_SECONDS = 60


class RefreshScheduler:
    """Run ``refresh_all_metrics`` every ``interval_minutes``.

    Opportunistic: nothing about the last run is persisted, and a restart
    simply starts a new cycle.
    """

    def __init__(
        self,
        engine: CalculationEngine,
        interval_minutes: int,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._engine = engine
        self._interval_seconds = interval_minutes * 60
        self._sleep = sleep
        self._task: asyncio.Task[None] | None = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, max_runs: int | None = None) -> None:
        """Run refresh cycles until cancelled or ``max_runs`` sweeps have completed."""
        logger.info(
            "Starting metrics refresh loop (every %d minutes)",
            self._interval_seconds // 60,
        )

        while max_runs is None or self.runs < max_runs:
            try:
                await self._engine.refresh_all_metrics()
                self.runs += 1
                if max_runs is not None and self.runs >= max_runs:
                    break
                await self._sleep(self._interval_seconds)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error in refresh loop: %s", e)
                await self._sleep(ERROR_BACKOFF_SECONDS)

    def start(self) -> asyncio.Task[None]:
        if self.running:
            raise RuntimeError("Refresh scheduler is already running")
        self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Metrics refresh loop stopped after %d runs", self.runs)
