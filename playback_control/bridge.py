# -*- coding: utf-8 -*-
"""Host commands against tracked videos.

Every command receives a video id and a completion callback
``ret(status, data)``. State-changing commands go through the interaction
gate and complete only once the page confirms the change; failures are
reported through ``ret`` and never raised into the page.
"""

import logging
from enum import IntEnum
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from .config import Config, config as default_config
from .errors import TargetNotFound
from .gate import InteractionGate
from .host import HostChannel, parse_address
from .monitor import PlaybackMonitor

logger = logging.getLogger(__name__)

Ret = Callable[[int, Dict[str, Any]], Any]


class Status(IntEnum):
    """Completion status of a command."""
    OK = 0
    TARGET_NOT_FOUND = 1
    INVALID_ARGUMENT = 2
    UNKNOWN_COMMAND = 3


class TimeArgs(BaseModel):
    """Payload of the ``time`` command."""
    time: float = Field(ge=0)
    keepPaused: bool = False


class MutedArgs(BaseModel):
    """Payload of the ``muted`` command."""
    value: bool


class VolumeArgs(BaseModel):
    """Payload of the ``volume`` command."""
    value: float = Field(ge=0.0, le=1.0)


class CommandBridge:
    """Dispatches host commands to tracked videos.

    Args:
        monitor: Registry of tracked videos.
        gate: Gate for actions that need a user gesture.
        host: Channel used to report completions of wire commands.
        config: Thresholds; defaults to the global configuration.
    """

    def __init__(self, monitor: PlaybackMonitor, gate: InteractionGate,
                 host: Optional[HostChannel] = None, config: Optional[Config] = None):
        self.monitor = monitor
        self.gate = gate
        self.host = host
        self.config = config or default_config
        self.commands = {
            "play": self._dispatch_play,
            "pause": self._dispatch_pause,
            "time": self._dispatch_time,
            "muted": self._dispatch_muted,
            "volume": self._dispatch_volume,
            "isPlaying": self._dispatch_is_playing,
        }

    # Entry points

    def dispatch(self, command: str, video_id: int, payload: Optional[Dict[str, Any]], ret: Ret) -> None:
        """Run ``command`` for ``video_id``; the outcome always goes to ``ret``."""
        handler = self.commands.get(command)
        if handler is None:
            ret(Status.UNKNOWN_COMMAND, {"command": command})
            return
        try:
            handler(video_id, payload or {}, ret)
        except TargetNotFound as e:
            logger.warning("%s: %s", command, e)
            ret(Status.TARGET_NOT_FOUND, {"id": e.video_id})
        except ValidationError as e:
            ret(Status.INVALID_ARGUMENT, {"errors": e.errors(include_url=False, include_context=False)})

    def handle(self, address: str, payload: Optional[Dict[str, Any]], ret: Optional[Ret] = None) -> None:
        """Run a wire command addressed as ``<command>:<videoId>``.

        Without ``ret``, the completion is reported to the host as
        ``<command>.<status>``.
        """
        if ret is None:
            ret = self._responder(address)
        try:
            command, video_id = parse_address(address)
        except ValueError as e:
            ret(Status.INVALID_ARGUMENT, {"message": str(e)})
            return
        self.dispatch(command, video_id, payload, ret)

    # Commands

    def play(self, video_id: int, ret: Ret) -> None:
        self._change_state(video_id, "play", ret)

    def pause(self, video_id: int, ret: Ret) -> None:
        self._change_state(video_id, "pause", ret)

    def time(self, video_id: int, target: float, keep_paused: bool, ret: Ret) -> None:
        """Seek to ``target`` seconds.

        The video is paused for the seek and resumed afterwards if it was
        playing and ``keep_paused`` is not set.
        """
        video = self._video(video_id)
        if self._eq(video.current_time, target):
            ret(Status.OK, {})
            return

        was_playing = not keep_paused and self.monitor.is_playing(video)

        def seek():
            video.pause()

            def seeked(event):
                if not self._eq(video.current_time, target):
                    return
                video.remove_event_listener("seeked", seeked, True)
                if was_playing:
                    self.gate.run_on_next_user_gesture(
                        lambda: self._await_event(video, "playing", video.play, ret))
                else:
                    ret(Status.OK, {})

            video.add_event_listener("seeked", seeked, True)
            video.current_time = target

        self.gate.run_on_next_user_gesture(seek)

    def muted(self, video_id: int, value: bool, ret: Ret) -> None:
        video = self._video(video_id)

        def apply():
            video.muted = value
            ret(Status.OK, {})

        self.gate.run_on_next_user_gesture(apply)

    def volume(self, video_id: int, value: float, ret: Ret) -> None:
        video = self._video(video_id)

        def apply():
            video.volume = value
            ret(Status.OK, {})

        self.gate.run_on_next_user_gesture(apply)

    def is_playing(self, video_id: int, ret: Ret) -> None:
        ret(Status.OK, {"value": self.monitor.is_playing(self._video(video_id))})

    # Internals

    def _dispatch_play(self, video_id, payload, ret):
        self.play(video_id, ret)

    def _dispatch_pause(self, video_id, payload, ret):
        self.pause(video_id, ret)

    def _dispatch_time(self, video_id, payload, ret):
        args = TimeArgs.model_validate(payload)
        self.time(video_id, args.time, args.keepPaused, ret)

    def _dispatch_muted(self, video_id, payload, ret):
        self.muted(video_id, MutedArgs.model_validate(payload).value, ret)

    def _dispatch_volume(self, video_id, payload, ret):
        self.volume(video_id, VolumeArgs.model_validate(payload).value, ret)

    def _dispatch_is_playing(self, video_id, payload, ret):
        self.is_playing(video_id, ret)

    def _video(self, video_id: int):
        handle = self.monitor.handle(video_id)
        if handle is None:
            raise TargetNotFound(video_id)
        return handle.element

    def _change_state(self, video_id: int, event_type: str, ret: Ret) -> None:
        video = self._video(video_id)
        method = getattr(video, event_type)

        def apply():
            # Already there: no native event is going to follow
            if video.paused == (event_type == "pause"):
                ret(Status.OK, {})
                return
            self._await_event(video, event_type, method, ret)

        self.gate.run_on_next_user_gesture(apply)

    def _await_event(self, video, event_type: str, action: Callable[[], Any], ret: Ret) -> None:
        """Run ``action`` and complete once ``event_type`` fires on ``video``."""
        def confirmed(event):
            video.remove_event_listener(event_type, confirmed, True)
            ret(Status.OK, {})

        video.add_event_listener(event_type, confirmed, True)
        action()

    def _eq(self, a: float, b: float) -> bool:
        return abs(a - b) <= self.config.position_epsilon

    def _responder(self, address: str) -> Ret:
        command = address.partition(":")[0] or "command"

        def ret(status, data):
            if self.host is not None:
                self.host.respond(command, status, data)

        return ret
