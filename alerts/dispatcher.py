"""
Per-destination serialized, paced alert delivery.

Each destination key (a team's webhook URL) gets its own asyncio.Queue and
a single consumer task, created lazily on first use and kept for the
lifetime of the dispatcher. Tasks for one destination run strictly one at a
time in submission order with a pause after each send; different
destinations proceed concurrently.

Queues live in memory only. Tasks still queued when the process stops are
lost, which is acceptable because alert markers are written only after a
confirmed delivery: the next scan re-detects the PR and enqueues it again.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict

from utils.time_format import utcnow

logger = logging.getLogger(__name__)

Task = Callable[[], Awaitable[Any]]


@dataclass
class DispatchTask:
    """One queued send; lives only in memory."""
    destination_key: str
    payload: Task
    future: asyncio.Future
    enqueued_at: datetime = field(default_factory=utcnow)


class AlertDispatcher:
    """
    Worker-per-destination dispatch queue.

    One instance is created at process start and shared by every scan tick.
    Separate instances are fully independent (useful in tests).
    """

    def __init__(self, pacing_seconds: float = 0.5):
        """
        Args:
            pacing_seconds: Pause after each send before the next send to the
                            same destination (default 0.5s)
        """
        self.pacing_seconds = pacing_seconds
        self._queues: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, asyncio.Task] = {}
        # Guards the queue/worker maps only, never a send
        self._lock = asyncio.Lock()
        self._closed = False

    async def enqueue(self, destination_key: str, task: Task) -> asyncio.Future:
        """
        Queue `task` behind everything already queued for `destination_key`.

        A failed task never blocks the ones after it: its exception is set on
        its own future and the worker moves on.

        Args:
            destination_key: Identifier of the destination chain (webhook URL)
            task: Zero-argument coroutine function performing the send

        Returns:
            Future resolving to the task's result, or raising its exception
        """
        if self._closed:
            raise RuntimeError("Dispatcher is closed")

        future = asyncio.get_running_loop().create_future()
        item = DispatchTask(destination_key=destination_key, payload=task, future=future)

        async with self._lock:
            queue = self._queues.get(destination_key)
            if queue is None:
                queue = asyncio.Queue()
                self._queues[destination_key] = queue
                self._workers[destination_key] = asyncio.create_task(
                    self._worker(destination_key, queue)
                )
                logger.debug(f"Started dispatch worker #{len(self._workers)}")

        queue.put_nowait(item)
        return future

    async def submit(self, destination_key: str, task: Task) -> Any:
        """Enqueue `task` and wait for its outcome."""
        future = await self.enqueue(destination_key, task)
        return await future

    def pending(self, destination_key: str) -> int:
        """Number of tasks waiting (not yet started) for a destination."""
        queue = self._queues.get(destination_key)
        return queue.qsize() if queue is not None else 0

    async def _worker(self, destination_key: str, queue: asyncio.Queue) -> None:
        while True:
            item: DispatchTask = await queue.get()
            try:
                if item.future.cancelled():
                    continue
                try:
                    result = await item.payload()
                except asyncio.CancelledError:
                    item.future.cancel()
                    raise
                except Exception as e:
                    logger.warning(f"Dispatch task failed: {e}")
                    if not item.future.done():
                        item.future.set_exception(e)
                else:
                    if not item.future.done():
                        item.future.set_result(result)
                await asyncio.sleep(self.pacing_seconds)
            finally:
                queue.task_done()

    async def close(self) -> None:
        """
        Stop all workers. Tasks still queued are dropped and their futures
        cancelled.
        """
        self._closed = True
        async with self._lock:
            workers = list(self._workers.values())
            queues = list(self._queues.values())
            self._workers.clear()
            self._queues.clear()

        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        dropped = 0
        for queue in queues:
            while not queue.empty():
                item = queue.get_nowait()
                item.future.cancel()
                dropped += 1
        if dropped:
            logger.info(f"Dispatcher closed; dropped {dropped} queued alert(s)")
