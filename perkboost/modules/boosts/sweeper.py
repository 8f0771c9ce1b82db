"""
BoostSweepScheduler - periodic driver for `BoostLifecycleService.run_once`.

Runs one eager sweep at start (``boosts.sweeper.run_on_start``) and then one
every ``boosts.sweeper.interval_seconds``. A failing sweep is logged and the
loop carries on; the next tick retries the whole sweep.

Usage
-----
>>> stop_event = asyncio.Event()
>>> scheduler = BoostSweepScheduler(lifecycle, config_manager)
>>> task = asyncio.create_task(scheduler.run_forever(stop_event=stop_event))
>>> # ... later ...
>>> stop_event.set()
>>> await task

or let the scheduler own the task with `start()` / `stop()`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from perkboost.core.logging.logger import LogContext, get_logger

if TYPE_CHECKING:
    from perkboost.core.config.manager import ConfigManager
    from perkboost.modules.boosts.lifecycle_service import BoostLifecycleService, SweepResult

logger = get_logger(__name__)

DEFAULT_INTERVAL_SECONDS = 60.0


@dataclass
class SweepSchedulerStats:
    ticks: int = 0
    failures: int = 0
    boosts_expired: int = 0
    last_result: Optional[SweepResult] = None


class BoostSweepScheduler:
    def __init__(
        self,
        lifecycle: BoostLifecycleService,
        config_manager: ConfigManager,
        *,
        interval_seconds: Optional[float] = None,
        run_on_start: Optional[bool] = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._interval = float(
            interval_seconds
            if interval_seconds is not None
            else config_manager.get("boosts.sweeper.interval_seconds", DEFAULT_INTERVAL_SECONDS)
        )
        if self._interval <= 0:
            logger.warning(
                "Non-positive sweep interval; using default",
                extra={"interval_seconds": self._interval},
            )
            self._interval = DEFAULT_INTERVAL_SECONDS
        self._run_on_start = (
            run_on_start
            if run_on_start is not None
            else config_manager.get_bool("boosts.sweeper.run_on_start", True)
        )
        self._stats = SweepSchedulerStats()
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def stats(self) -> SweepSchedulerStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_forever(self, *, stop_event: asyncio.Event) -> None:
        """Sweep until ``stop_event`` is set."""
        logger.info(
            "BoostSweepScheduler started",
            extra={"interval_seconds": self._interval, "run_on_start": self._run_on_start},
        )

        try:
            if self._run_on_start:
                await self.tick_once()

            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
                except asyncio.TimeoutError:
                    await self.tick_once()
        finally:
            logger.info(
                "BoostSweepScheduler stopped",
                extra={"ticks": self._stats.ticks, "failures": self._stats.failures},
            )

    async def tick_once(self) -> None:
        """Run one sweep; failures are logged, never raised."""
        self._stats.ticks += 1
        async with LogContext(component="boost_sweeper", operation="boost.sweep"):
            try:
                result = await self._lifecycle.run_once()
            except Exception as exc:
                self._stats.failures += 1
                logger.error(
                    "Boost sweep failed; retrying on next tick",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )
                return

        self._stats.last_result = result
        self._stats.boosts_expired += result.expired_count

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self.run_forever(stop_event=self._stop_event), name="boost-sweeper"
        )

    async def stop(self) -> None:
        if self._task is None or self._stop_event is None:
            return
        self._stop_event.set()
        await self._task
        self._task = None
        self._stop_event = None
