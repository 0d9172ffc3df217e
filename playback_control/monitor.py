# -*- coding: utf-8 -*-
"""Playback monitoring of tracked video elements.

Native ``waiting``/``canplay`` events are unreliable on players that feed
media through MSE, so stalls are detected by sampling the playback position
once per display frame. Each tracked video runs a two-state machine:

- ``IDLE -> BUFFERING`` when the position did not move since the previous
  frame although a ``timeupdate`` was seen since the last stall (emits
  ``waiting``).
- ``BUFFERING -> IDLE`` as soon as the position moves again (emits
  ``playing``).
- While idle and moving, every frame emits ``update``.

Independently, when the buffered range ends within ``buffer_margin`` of the
position (and the natural end is further away than that) ``bufferPause``
is emitted once so the host can pause early; ``bufferPlay`` follows once the
buffer has grown past the margin again.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from . import host as events
from .config import Config, config as default_config
from .discovery import is_element, when_present
from .host import HostChannel
from .scheduler import STOP, vsync_interval

logger = logging.getLogger(__name__)

# Attribute tagging a tracked element with its id
VIDEO_ID_ATTRIBUTE = "data-vid"


class BufferingState(Enum):
    """Sampling state of a tracked video."""
    IDLE = "idle"
    BUFFERING = "buffering"


@dataclass(frozen=True)
class PlaybackSample:
    """Point-in-time playback snapshot."""
    position: float
    frame_count: int
    buffered_end: float

    @classmethod
    def capture(cls, video) -> "PlaybackSample":
        quality = video.get_video_playback_quality()
        return cls(
            position=video.current_time,
            frame_count=quality["totalVideoFrames"] - quality["droppedVideoFrames"],
            buffered_end=video.buffered_end,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"time": self.position, "frame": self.frame_count, "buffered": self.buffered_end}


@dataclass
class VideoHandle:
    """A tracked video element.

    The handle does not keep the element alive past its release: once the
    element leaves the document the handle is invalidated and ``element``
    is cleared.
    """
    id: int
    element: Any
    last_sample: Optional[PlaybackSample] = None
    buffering_state: BufferingState = BufferingState.IDLE
    awaiting_resume: bool = False
    time_updated: bool = False
    sampling: bool = False
    metadata_reported: bool = False
    valid: bool = True
    listeners: List[Tuple[str, Callable]] = field(default_factory=list, repr=False)


class PlaybackMonitor:
    """Tracks video elements of one document and reports their playback.

    Args:
        document: Document holding the videos.
        scheduler: Frame scheduler driving the sampling loop.
        host: Outbound channel for telemetry.
        config: Thresholds; defaults to the global configuration.
    """

    def __init__(self, document, scheduler, host: HostChannel, config: Optional[Config] = None):
        self.document = document
        self.scheduler = scheduler
        self.host = host
        self.config = config or default_config
        self.handles: Dict[int, VideoHandle] = {}
        self.active_player: Optional[VideoHandle] = None
        self._counter = 0
        self._disconnect = document.observe_mutations(self._on_mutation)

    # Tracking

    def activate(self, selector_or_element) -> bool:
        """Start tracking a video element, or the first one matching a selector.

        A selector that matches nothing yet is watched and the element is
        tracked once it is added to the document.

        Returns:
            True if an element was tracked right away.
        """
        if is_element(selector_or_element):
            self.track(selector_or_element)
            return True
        if not isinstance(selector_or_element, str):
            return False

        found: List[Any] = []

        def on_found(element):
            found.append(element)
            self.track(element)

        when_present(self.document, selector_or_element, on_found)
        if not found:
            logger.info("Waiting for a video matching %r", selector_or_element)
        return bool(found)

    def track(self, video) -> VideoHandle:
        """Start monitoring ``video`` and assign it an id."""
        existing = self.find(video)
        if existing is not None:
            return existing

        handle = VideoHandle(id=self._counter, element=video)
        self._counter += 1
        self.handles[handle.id] = handle
        video.set_attribute(VIDEO_ID_ATTRIBUTE, handle.id)

        self._listen(handle, "playing", self._start_sampling)
        self._listen(handle, "loadedmetadata", self._on_metadata)
        self._listen(handle, "fullscreenchange", self._on_fullscreen)
        self._listen(handle, "timeupdate", self._on_time_update)
        self._listen(handle, "canplay", lambda h: self._provide_sample(events.CANPLAY, h))
        self._listen(handle, "ended", lambda h: self._provide_sample(events.ENDED, h))
        self._listen(handle, "pause", lambda h: self._provide_sample(events.WAITING, h))
        self._listen(handle, "playing", lambda h: self._provide_sample(events.PLAYING, h))
        logger.info("Tracking video %d", handle.id)
        return handle

    def find(self, video) -> Optional[VideoHandle]:
        for handle in self.handles.values():
            if handle.element is video:
                return handle
        return None

    def handle(self, video_id: int) -> Optional[VideoHandle]:
        """Live handle for ``video_id``, or None if unknown or detached."""
        handle = self.handles.get(video_id)
        if handle is None:
            return None
        if not handle.element.is_connected:
            self.release(handle)
            return None
        return handle

    def release(self, handle: VideoHandle) -> None:
        """Stop monitoring; no further events are emitted for ``handle``."""
        if not handle.valid:
            return
        handle.valid = False
        for type, listener in handle.listeners:
            handle.element.remove_event_listener(type, listener, True)
        handle.listeners.clear()
        self.handles.pop(handle.id, None)
        if self.active_player is handle:
            self.active_player = None
        handle.element = None
        logger.info("Released video %d", handle.id)

    def close(self) -> None:
        self._disconnect()
        for handle in list(self.handles.values()):
            self.release(handle)

    def is_playing(self, video) -> bool:
        return (
            video.ready_state > self.config.playing_ready_state
            and not video.paused
            and not video.ended
            and not video.seeking
        )

    # Sampling

    def tick(self, handle: VideoHandle):
        """Evaluate one frame for ``handle``.

        A frame whose evaluation fails is logged and skipped; sampling goes
        on with the next frame.

        Returns:
            ``STOP`` once the handle is released or the element detached.
        """
        if not handle.valid:
            return STOP
        try:
            if not handle.element.is_connected:
                self.release(handle)
                return STOP
            self._sample(handle)
        except Exception:
            logger.exception("Sampling video %d failed, retrying next frame", handle.id)
        return None

    def _sample(self, handle: VideoHandle) -> None:
        video = handle.element
        current = PlaybackSample.capture(video)
        prior = handle.last_sample or current
        delta = current.position - prior.position
        margin = self.config.buffer_margin

        if handle.buffering_state is BufferingState.IDLE and delta == 0 and handle.time_updated:
            handle.buffering_state = BufferingState.BUFFERING
            handle.time_updated = False
            self._provide(events.WAITING, handle, current)
        elif delta > 0:
            if handle.buffering_state is BufferingState.BUFFERING:
                handle.buffering_state = BufferingState.IDLE
                self._provide(events.PLAYING, handle, current)
            else:
                self._provide(events.UPDATE, handle, current)
                if (not handle.awaiting_resume
                        and current.buffered_end - current.position <= margin
                        # Not simply running into the natural end
                        and video.duration - current.position > margin):
                    handle.awaiting_resume = True
                    self._provide(events.BUFFER_PAUSE, handle, current)

        if handle.awaiting_resume and current.buffered_end - current.position > margin:
            handle.awaiting_resume = False
            self._provide(events.BUFFER_PLAY, handle, current)

        handle.last_sample = current

    def _start_sampling(self, handle: VideoHandle) -> None:
        if handle.sampling:
            return
        handle.sampling = True
        handle.last_sample = PlaybackSample.capture(handle.element)
        handle.buffering_state = BufferingState.IDLE
        handle.time_updated = False
        handle.awaiting_resume = False
        vsync_interval(self.scheduler, lambda: self.tick(handle))

    # Native events

    def _listen(self, handle: VideoHandle, type: str, callback: Callable[[VideoHandle], Any]) -> None:
        def listener(event):
            if handle.valid:
                callback(handle)

        handle.element.add_event_listener(type, listener, True)
        handle.listeners.append((type, listener))

    def _on_metadata(self, handle: VideoHandle) -> None:
        if handle.metadata_reported:
            return
        handle.metadata_reported = True
        video = handle.element
        self.host.provide(events.METADATA, {
            "width": video.video_width,
            "height": video.video_height,
            "duration": video.duration,
            "id": handle.id,
        })

    def _on_fullscreen(self, handle: VideoHandle) -> None:
        is_fullscreen = self.document.fullscreen_element is not None
        self.host.provide(events.FULLSCREEN, {"value": is_fullscreen, "id": handle.id})
        if is_fullscreen:
            self.active_player = handle

    def _on_time_update(self, handle: VideoHandle) -> None:
        if handle.buffering_state is not BufferingState.BUFFERING:
            handle.time_updated = True

    def _on_mutation(self, added, removed) -> None:
        if not removed:
            return
        for handle in list(self.handles.values()):
            try:
                connected = handle.element.is_connected
            except TimeoutError:
                # The sampling loop checks again on its next frame
                logger.warning("Could not check whether video %d is still attached", handle.id)
                continue
            if not connected:
                self.release(handle)

    def _provide_sample(self, name: str, handle: VideoHandle) -> None:
        self._provide(name, handle, PlaybackSample.capture(handle.element))

    def _provide(self, name: str, handle: VideoHandle, sample: PlaybackSample) -> None:
        self.host.provide(name, {"id": handle.id, **sample.to_dict()})
