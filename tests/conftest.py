# -*- coding: utf-8 -*-
"""Shared fixtures: an in-memory page driven by a manual scheduler."""

import pytest

from playback_control.agent import PlaybackAgent
from playback_control.config import Config
from playback_control.dom import Rect, VideoElement, Window
from playback_control.host import HostChannel, TelemetryLog
from playback_control.scheduler import ManualScheduler


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def settings(tmp_path):
    return Config(data_dir=tmp_path)


@pytest.fixture
def telemetry():
    return TelemetryLog(capacity=1000)


@pytest.fixture
def host(telemetry):
    return HostChannel(telemetry.send, clock=lambda: 1700000000.5)


@pytest.fixture
def window(scheduler):
    return Window("https://player.example", scheduler=scheduler)


@pytest.fixture
def video(window):
    element = VideoElement(rect=Rect(10, 20, 640, 360), id="player")
    window.document.body.append_child(element)
    return element


@pytest.fixture
def agent(window, scheduler, host, settings):
    return PlaybackAgent(window, scheduler, host, settings)


def events(telemetry, *names):
    """Decoded ``(name, payload)`` pairs, optionally filtered by name."""
    return [
        (entry["name"], entry["payload"])
        for entry in telemetry.entries()
        if not names or entry["name"] in names
    ]


def user_click(window):
    """Genuine click somewhere in the page."""
    return window.document.body.click(trusted=True)


def start_playback(video, scheduler):
    """Load metadata and start playing without any gesture restriction."""
    restricted = video.requires_user_gesture
    video.requires_user_gesture = False
    if video.ready_state == 0:
        video.load_metadata(1920, 1080, 100.0)
    video.play()
    scheduler.run_pending()
    video.requires_user_gesture = restricted
