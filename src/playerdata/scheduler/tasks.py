"""Task scheduler on a pure asyncio event loop.

Implements the ``TaskScheduler`` protocol for hosts that do not bring their
own: one-shot and repeating callbacks identified by integer ids. All methods
must be called from the event loop's thread.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Callable

logger = logging.getLogger(__name__)


class AsyncioScheduler:
    """Run callbacks later or periodically; cancel them by id."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._ids = itertools.count(1)
        self._handles: dict[int, asyncio.TimerHandle] = {}

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    # ── Submission ───────────────────────────────────────────

    def run_task_later(self, callback: Callable[[], None], delay: float) -> int:
        task_id = next(self._ids)
        self._handles[task_id] = self._get_loop().call_later(
            delay, self._run_once, task_id, callback
        )
        return task_id

    def run_task_timer(self, callback: Callable[[], None], delay: float, period: float) -> int:
        if period <= 0:
            raise ValueError(f"period must be positive, got {period}")
        task_id = next(self._ids)
        self._handles[task_id] = self._get_loop().call_later(
            delay, self._run_periodic, task_id, callback, period
        )
        logger.debug("Scheduled task %d every %.2fs", task_id, period)
        return task_id

    def _run_once(self, task_id: int, callback: Callable[[], None]) -> None:
        self._handles.pop(task_id, None)
        self._invoke(task_id, callback)

    def _run_periodic(self, task_id: int, callback: Callable[[], None], period: float) -> None:
        if task_id not in self._handles:
            return
        self._invoke(task_id, callback)
        # The callback may have cancelled its own task
        if task_id in self._handles:
            self._handles[task_id] = self._get_loop().call_later(
                period, self._run_periodic, task_id, callback, period
            )

    def _invoke(self, task_id: int, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Scheduled task %d failed", task_id)

    # ── Cancellation ─────────────────────────────────────────

    def cancel_task(self, task_id: int) -> None:
        handle = self._handles.pop(task_id, None)
        if handle is not None:
            handle.cancel()
            logger.debug("Cancelled task %d", task_id)

    def cancel_all(self) -> None:
        for task_id in list(self._handles):
            self.cancel_task(task_id)

    def pending(self) -> list[int]:
        return sorted(self._handles)
