"""Bounded in-process queue that feeds reports to the moderation pipeline."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from beatguard.obs import metrics

logger = logging.getLogger(__name__)

ProcessFn = Callable[[str], Awaitable[object]]


class ModerationDispatcher:
    """Runs ``process`` for submitted report ids on a fixed number of worker tasks.

    ``submit`` never blocks the caller. When the queue is full the id is dropped
    and the report stays Checking for the retry sweep to pick up.
    """

    def __init__(self, process: ProcessFn, *, concurrency: int = 2, max_pending: int = 200) -> None:
        self._process = process
        self._concurrency = max(1, concurrency)
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max(1, max_pending))
        self._queued: set[str] = set()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if self._tasks:
            return
        event_loop = loop or asyncio.get_running_loop()
        self._tasks = [
            event_loop.create_task(self._worker(), name=f"moderation-dispatch-{index}")
            for index in range(self._concurrency)
        ]

    def submit(self, report_id: str) -> bool:
        report_id = str(report_id)
        if report_id in self._queued:
            return True
        try:
            self._queue.put_nowait(report_id)
        except asyncio.QueueFull:
            logger.warning("Dispatch queue full, report left for retry sweep", extra={"report_id": report_id})
            return False
        self._queued.add(report_id)
        metrics.MOD_DISPATCH_QUEUE_DEPTH.set(self._queue.qsize())
        return True

    async def join(self) -> None:
        await self._queue.join()

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _worker(self) -> None:
        while True:
            report_id = await self._queue.get()
            self._queued.discard(report_id)
            metrics.MOD_DISPATCH_QUEUE_DEPTH.set(self._queue.qsize())
            try:
                await self._process(report_id)
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001 - one failing report must not stop the worker
                logger.exception("Moderation processing failed", extra={"report_id": report_id})
            finally:
                self._queue.task_done()


__all__ = ["ModerationDispatcher"]
