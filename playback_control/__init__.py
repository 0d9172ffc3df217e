# -*- coding: utf-8 -*-
"""Playback Control - observe and remote-control video playback in a browser page."""

from .agent import PlaybackAgent
from .bridge import CommandBridge, Status
from .frame_protocol import FrameProtocol
from .gate import InteractionGate
from .host import HostChannel, TelemetryLog
from .monitor import BufferingState, PlaybackMonitor, PlaybackSample, VideoHandle
from .position import Position, PositionResolver
from .scheduler import STOP, AsyncioScheduler, ManualScheduler

__version__ = "0.1.0"

__all__ = [
    "AsyncioScheduler",
    "BufferingState",
    "CommandBridge",
    "FrameProtocol",
    "HostChannel",
    "InteractionGate",
    "ManualScheduler",
    "PlaybackAgent",
    "PlaybackMonitor",
    "PlaybackSample",
    "Position",
    "PositionResolver",
    "STOP",
    "Status",
    "TelemetryLog",
    "VideoHandle",
]
