"""
Best-effort outbox for post-commit side effects.

Work submitted here runs after the triggering transaction has committed, on a
background task owned by the outbox, never inside the request. Each item is
retried with exponential backoff up to `max_attempts`; a final failure is
logged and dropped. Nothing raised by an item ever reaches the submitter.

    outbox.submit("notification.create", make_row, user_id=...)
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

log = structlog.get_logger()

Job = Callable[[], Awaitable[Any]]


class OutboxItem:
    __slots__ = ("name", "job", "context", "attempts")

    def __init__(self, name: str, job: Job, context: dict[str, Any]):
        self.name = name
        self.job = job
        self.context = context
        self.attempts = 0


class Outbox:
    """In-process queue drained by a single worker task."""

    def __init__(self, max_attempts: int = 3, base_delay: float = 0.5) -> None:
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self._queue: asyncio.Queue[OutboxItem] | None = None
        self._worker: asyncio.Task | None = None
        # Most recent items that exhausted their retries
        self.failed: deque[OutboxItem] = deque(maxlen=100)

    def submit(self, name: str, job: Job, **context: Any) -> None:
        """Queue `job` (a zero-argument coroutine factory). Never raises."""
        try:
            self._ensure_worker()
            self._queue.put_nowait(OutboxItem(name, job, context))
        except Exception:
            log.exception("outbox.submit_failed", item=name, **context)

    async def drain(self) -> None:
        """Wait until every queued item has finished (succeeded or given up)."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Drain outstanding work, then stop the worker."""
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    # --- Worker ---

    def _ensure_worker(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                await self._process(item)
            finally:
                self._queue.task_done()

    async def _process(self, item: OutboxItem) -> None:
        while True:
            item.attempts += 1
            try:
                await item.job()
                log.debug("outbox.item_done", item=item.name, attempts=item.attempts, **item.context)
                return
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if item.attempts >= self.max_attempts:
                    self.failed.append(item)
                    log.error(
                        "outbox.item_failed",
                        item=item.name,
                        attempts=item.attempts,
                        error=str(exc),
                        **item.context,
                    )
                    return
                delay = self.base_delay * (2 ** (item.attempts - 1))
                log.warning(
                    "outbox.item_retry",
                    item=item.name,
                    attempts=item.attempts,
                    retry_in=delay,
                    error=str(exc),
                    **item.context,
                )
                await asyncio.sleep(delay)
