"""Periodic driver for the recommendation cycle."""
from __future__ import annotations

import asyncio
from typing import Optional, Set

from truckflow.core.logging import logger
from truckflow.services.recommendation_engine import RecommendationEngine


class RecommendationScheduler:
    """
    Fires `process_new_recommendations` after a warm-up delay and then on a
    fixed interval. Each tick runs as its own task, so a tick that lands
    while a cycle is still running hits the engine's single-flight guard
    and is counted as skipped.
    """

    def __init__(
        self,
        engine: RecommendationEngine,
        interval_seconds: float = 120.0,
        warmup_seconds: float = 3.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.warmup_seconds = max(0.0, warmup_seconds)
        self.ticks = 0
        self._stop_event: Optional[asyncio.Event] = None
        self._runner: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._runner = asyncio.create_task(self._run(), name="recommendation-scheduler")
        logger.info(
            "Recommendation scheduler started",
            interval_seconds=self.interval_seconds,
            warmup_seconds=self.warmup_seconds,
        )

    async def stop(self) -> None:
        if self._runner is None:
            return
        self._stop_event.set()
        await self._runner
        self._runner = None
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info("Recommendation scheduler stopped", ticks=self.ticks)

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to `seconds`; True when stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    def _tick(self) -> None:
        self.ticks += 1
        task = asyncio.create_task(self.engine.process_new_recommendations())
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _run(self) -> None:
        if await self._wait(self.warmup_seconds):
            return
        while True:
            self._tick()
            if await self._wait(self.interval_seconds):
                return
