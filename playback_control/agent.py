# -*- coding: utf-8 -*-
"""Playback agent for one frame, wired from its components."""

import logging
from typing import Any, Callable, Dict, Optional

from .bridge import CommandBridge, Ret
from .config import Config, config as default_config
from .dom import Rect
from .frame_protocol import FrameProtocol
from .gate import InteractionGate
from .host import HostChannel
from .monitor import PlaybackMonitor, VideoHandle
from .position import PositionResolver

logger = logging.getLogger(__name__)


class PlaybackAgent:
    """Observes and remote-controls video playback inside one window.

    Components are constructed here and handed to each other explicitly.
    All methods must be called on the thread running ``scheduler``.

    Args:
        window: Window (frame) the agent lives in.
        scheduler: Task and frame scheduler of that window.
        host: Outbound host channel.
        config: Thresholds; defaults to the global configuration.
        answer_children: Install the frame protocol responder so embedded
            child frames can ask for their ``<iframe>`` box.
    """

    def __init__(self, window, scheduler, host: HostChannel,
                 config: Optional[Config] = None, answer_children: bool = True):
        self.window = window
        self.scheduler = scheduler
        self.host = host
        self.config = config or default_config

        self.protocol = FrameProtocol(window)
        if answer_children:
            self.protocol.listen()
        self.positions = PositionResolver(window, self.protocol)
        self.gate = InteractionGate(window.document, host)
        self.monitor = PlaybackMonitor(window.document, scheduler, host, self.config)
        self.bridge = CommandBridge(self.monitor, self.gate, host, self.config)

    @property
    def active_player(self) -> Optional[VideoHandle]:
        """Video that most recently entered fullscreen."""
        return self.monitor.active_player

    def activate(self, selector_or_element) -> bool:
        return self.monitor.activate(selector_or_element)

    def handle_command(self, command: str, video_id: int, payload: Optional[Dict[str, Any]], ret: Ret) -> None:
        self.bridge.dispatch(command, video_id, payload, ret)

    def handle_wire_command(self, address: str, payload: Optional[Dict[str, Any]]) -> None:
        """Run a ``<command>:<videoId>`` command, answering on the host channel."""
        self.bridge.handle(address, payload)

    def bbox(self, target, callback: Callable[[Rect], Any]) -> None:
        self.positions.bbox(target, callback)

    def report_click_target(self, selector: str, callback: Callable[[Rect], Any]) -> None:
        self.positions.report_click_target(selector, callback)

    def videos(self):
        """Snapshot of tracked videos for status reporting."""
        result = []
        for video_id in sorted(self.monitor.handles):
            handle = self.monitor.handle(video_id)
            if handle is None:
                continue
            result.append({
                "id": handle.id,
                "playing": self.monitor.is_playing(handle.element),
                "buffering": handle.buffering_state.value,
                "awaiting_resume": handle.awaiting_resume,
                "active": handle is self.monitor.active_player,
            })
        return result

    def close(self) -> None:
        self.monitor.close()
        self.protocol.close()
