# -*- coding: utf-8 -*-
"""Cooperative scheduling for the single-threaded agent loop.

Everything the agent does runs as a callback on one execution stream:
tasks queued with ``call_soon`` and per-frame callbacks queued with
``request_frame``. Two schedulers are provided: ``ManualScheduler`` which is
driven explicitly (tests, embedders) and ``AsyncioScheduler`` which maps onto
an asyncio event loop running in the agent thread.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Callable, Deque, List

logger = logging.getLogger(__name__)

# Returned by a per-frame callback to stop rescheduling itself
STOP = object()


class ManualScheduler:
    """Scheduler whose tasks and frames only run when told to."""

    def __init__(self):
        self._tasks: Deque[Callable[[], Any]] = deque()
        self._frames: List[Callable[[], Any]] = []

    def call_soon(self, callback: Callable[[], Any]) -> None:
        """Queue a task to run on the next ``run_pending`` pass."""
        self._tasks.append(callback)

    def request_frame(self, callback: Callable[[], Any]) -> None:
        """Queue a callback for the next display frame."""
        self._frames.append(callback)

    @property
    def pending_frames(self) -> int:
        return len(self._frames)

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    def run_pending(self) -> int:
        """Run queued tasks until the queue is empty.

        Tasks queued while draining run in the same pass.

        Returns:
            Number of tasks that ran.
        """
        count = 0
        while self._tasks:
            self._tasks.popleft()()
            count += 1
        return count

    def advance_frame(self, count: int = 1) -> None:
        """Run ``count`` display frames.

        Each frame runs the callbacks requested before it started, then
        drains the task queue. Callbacks requested during a frame wait for
        the next one.
        """
        for _ in range(count):
            self.run_pending()
            frames, self._frames = self._frames, []
            for callback in frames:
                callback()
            self.run_pending()


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop.

    Must only be used from the thread running ``loop``.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, frame_interval: float = 1.0 / 60.0):
        self.loop = loop
        self.frame_interval = frame_interval

    def call_soon(self, callback: Callable[[], Any]) -> None:
        self.loop.call_soon(callback)

    def request_frame(self, callback: Callable[[], Any]) -> None:
        self.loop.call_later(self.frame_interval, callback)


def vsync_interval(scheduler, callback: Callable[[], Any]) -> None:
    """Call ``callback`` once per frame until it returns ``STOP``.

    Args:
        scheduler: Scheduler providing ``request_frame``.
        callback: Per-frame function. Returning ``STOP`` ends the loop.
    """
    def frame():
        if callback() is not STOP:
            scheduler.request_frame(frame)
        else:
            logger.debug("Frame loop %r stopped", callback)

    scheduler.request_frame(frame)
