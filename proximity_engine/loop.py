"""
Fixed-cadence tick loop. Single asyncio task, no threads.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from .detection_core import DetectionEngine, DetectionSnapshot

logger = logging.getLogger("engageos.loop")


class SensorLoop:
    def __init__(
        self,
        engine: DetectionEngine,
        on_snapshot: Optional[Callable[[DetectionSnapshot], Any]] = None,
        max_hz: Optional[float] = None,
    ):
        self.engine = engine
        self.on_snapshot = on_snapshot
        hz = max_hz or engine.config.detection.max_tick_hz
        self.interval = 1.0 / min(hz, engine.config.detection.max_tick_hz)
        self.ticks = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def run(self):
        loop = asyncio.get_running_loop()
        self._running = True
        logger.info("Sensor loop started at %.1f Hz", 1.0 / self.interval)
        try:
            while self._running:
                started = loop.time()
                snapshot = self.engine.tick()
                self.ticks += 1
                if self.on_snapshot is not None:
                    try:
                        result = self.on_snapshot(snapshot)
                        if inspect.isawaitable(result):
                            await result
                    except Exception:
                        logger.exception("Snapshot callback failed")
                elapsed = loop.time() - started
                await asyncio.sleep(max(0.0, self.interval - elapsed))
        finally:
            self._running = False
            logger.info("Sensor loop stopped after %d ticks", self.ticks)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    async def stop(self):
        self._running = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
