"""Periodic scan loops driving the alert engine."""

import asyncio
import logging
from typing import Dict, List, Optional

from models.data_models import AlertKind
from alerts.engine import AlertEngine

logger = logging.getLogger(__name__)


class AlertScheduler:
    """
    Runs two independent scan loops on the event loop:
    1. stale + unreviewed detection every `scan_interval` seconds
    2. stalled detection every `stalled_interval` seconds

    A failing tick is logged and the loop continues with the next one.
    Stopping cancels the loops; alerts still queued in the dispatcher are
    abandoned and picked up again by a later scan.
    """

    def __init__(
        self,
        engine: AlertEngine,
        scan_interval: float = 60,
        stalled_interval: Optional[float] = None,
    ):
        self.engine = engine
        self.loops: Dict[str, tuple] = {
            "stale/unreviewed": ([AlertKind.STALE, AlertKind.UNREVIEWED], scan_interval),
            "stalled": ([AlertKind.STALLED], stalled_interval or scan_interval),
        }
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    def start(self):
        """Starts the scan loops (runs the first tick immediately)."""
        if self._tasks:
            return
        for name, (kinds, interval) in self.loops.items():
            self._tasks[name] = asyncio.create_task(self._run(name, kinds, interval))
        logger.info(
            "Alert scheduler started: "
            + ", ".join(f"{name} every {interval}s" for name, (_, interval) in self.loops.items())
        )

    async def stop(self):
        """Stops the scan loops."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Alert scheduler stopped.")

    async def run_once(self, name: str) -> None:
        """Run a single tick of the named loop, logging instead of raising."""
        kinds, _ = self.loops[name]
        try:
            await self.engine.run_tick(kinds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"{name} scan tick failed: {e}")

    async def _run(self, name: str, kinds: List[AlertKind], interval: float):
        logger.debug(f"Scan loop '{name}' running for {[k.value for k in kinds]}")
        while True:
            await self.run_once(name)
            await asyncio.sleep(interval)
