# -*- coding: utf-8 -*-
"""Agent event loop thread and host-side gesture responder."""

import asyncio
import concurrent.futures
import logging
import math
import threading
from typing import Any, Callable, Dict, Optional, Tuple

from .agent import PlaybackAgent
from .bridge import Status
from .config import Config, config as default_config
from .host import USER_INTERACTION, HostChannel, TelemetryLog
from .scheduler import AsyncioScheduler

logger = logging.getLogger(__name__)


class AgentRunner:
    """Runs a ``PlaybackAgent`` on a dedicated asyncio loop thread.

    The agent is single-threaded; every call into it from another thread
    (API handlers, CDP reader) is marshalled onto the loop.

    Args:
        build_window: Called on the loop thread with the scheduler; returns
            the window the agent attaches to.
        config: Application configuration; defaults to the global one.
        telemetry: Sink for outbound host lines.
    """

    def __init__(self, build_window: Callable[[AsyncioScheduler], Any],
                 config: Optional[Config] = None, telemetry: Optional[TelemetryLog] = None):
        self.config = config or default_config
        self.telemetry = telemetry or TelemetryLog(self.config.telemetry_capacity)
        self.loop = asyncio.new_event_loop()
        self.scheduler = AsyncioScheduler(self.loop, self.config.frame_interval)
        self.agent: Optional[PlaybackAgent] = None
        self._build_window = build_window
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, timeout: float = 30.0) -> PlaybackAgent:
        """Start the loop thread and build the agent on it."""
        self._thread = threading.Thread(target=self._run, name="playback-agent", daemon=True)
        self._thread.start()
        return self.call(self._setup).result(timeout)

    def stop(self, timeout: float = 5.0) -> None:
        if not self.is_running:
            return
        if self.agent is not None:
            self.call(self.agent.close).result(timeout)
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout)

    def post(self, callback: Callable[[], Any]) -> None:
        """Schedule ``callback`` on the agent loop from any thread."""
        self.loop.call_soon_threadsafe(callback)

    def call(self, fn: Callable[..., Any], *args: Any) -> concurrent.futures.Future:
        """Run ``fn(*args)`` on the agent loop.

        Returns:
            Future resolved with the return value or the raised exception.
        """
        future: concurrent.futures.Future = concurrent.futures.Future()

        def run():
            if not future.set_running_or_notify_cancel():
                return
            try:
                future.set_result(fn(*args))
            except Exception as e:
                future.set_exception(e)

        self.post(run)
        return future

    def submit_command(self, command: str, video_id: int,
                       payload: Optional[Dict[str, Any]] = None) -> concurrent.futures.Future:
        """Dispatch a command; the future resolves with ``(Status, data)``.

        Gated commands resolve only after a user gesture; the future may
        never resolve.
        """
        return self._submit(lambda ret: self.agent.handle_command(command, video_id, payload, ret))

    def submit_wire_command(self, address: str,
                            payload: Optional[Dict[str, Any]] = None) -> concurrent.futures.Future:
        """Dispatch a ``<command>:<videoId>`` command."""
        return self._submit(lambda ret: self.agent.bridge.handle(address, payload, ret))

    def bbox(self, target) -> concurrent.futures.Future:
        """Absolute bounding box of an element or selector."""
        future: concurrent.futures.Future = concurrent.futures.Future()

        def run():
            try:
                self.agent.bbox(target, future.set_result)
            except Exception as e:
                future.set_exception(e)

        self.post(run)
        return future

    def click_target(self, selector: str) -> concurrent.futures.Future:
        """Absolute box of the element matching ``selector``, once it exists."""
        future: concurrent.futures.Future = concurrent.futures.Future()

        def report(rect):
            if not future.done():
                future.set_result(rect)

        def run():
            try:
                self.agent.report_click_target(selector, report)
            except Exception as e:
                future.set_exception(e)

        self.post(run)
        return future

    def videos(self) -> concurrent.futures.Future:
        return self.call(lambda: self.agent.videos())

    # Internals

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_forever()
        finally:
            self.loop.close()

    def _setup(self) -> PlaybackAgent:
        window = self._build_window(self.scheduler)
        host = HostChannel(self.telemetry.send)
        self.agent = PlaybackAgent(window, self.scheduler, host, self.config)
        return self.agent

    def _submit(self, start: Callable[[Callable[[int, Dict[str, Any]], Any]], Any]) -> concurrent.futures.Future:
        future: concurrent.futures.Future = concurrent.futures.Future()

        def ret(status, data):
            if not future.done():
                future.set_result((Status(status), data))

        def run():
            try:
                start(ret)
            except Exception as e:
                if not future.done():
                    future.set_exception(e)

        self.post(run)
        return future


class GestureResponder:
    """Answers the agent's user interaction requests with a real click.

    The click lands on the centre of the active (fullscreen) player if
    there is one, otherwise on ``fallback_point()``.

    Args:
        runner: Runner whose telemetry carries the requests.
        click: Performs a trusted click at viewport coordinates.
        fallback_point: Returns the point to click without an active player.
    """

    def __init__(self, runner: AgentRunner, click: Callable[[float, float], Any],
                 fallback_point: Callable[[], Tuple[float, float]]):
        self.runner = runner
        self._click = click
        self._fallback_point = fallback_point

    def attach(self) -> None:
        self.runner.telemetry.subscribe(self._on_line)

    def target(self) -> Tuple[float, float]:
        """Point to click; must run on the agent loop."""
        agent = self.runner.agent
        active = agent.active_player if agent is not None else None
        if active is not None and active.element is not None:
            # Clicks are dispatched in top frame coordinates
            offset = agent.positions.local_frame_position()
            rect = active.element.get_bounding_client_rect()
            x = offset.x + rect.x + rect.width / 2.0
            y = offset.y + rect.y + rect.height / 2.0
            if math.isfinite(x) and math.isfinite(y):
                return x, y
        return self._fallback_point()

    def _on_line(self, name: str, payload: Dict[str, Any]) -> None:
        if name != f"{USER_INTERACTION}.{int(Status.OK)}":
            return
        # Click after the requesting gate call has returned
        self.runner.post(self._perform)

    def _perform(self) -> None:
        agent = self.runner.agent
        if agent is None or agent.gate.pending == 0:
            # An earlier click already satisfied every waiting action
            return
        x, y = self.target()
        logger.debug("Performing user interaction click at (%.1f, %.1f)", x, y)
        self._click(x, y)
