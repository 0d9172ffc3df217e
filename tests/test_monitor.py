# -*- coding: utf-8 -*-
"""Tests for the per-frame playback monitor."""

import random

import pytest

from playback_control.dom import VideoElement
from playback_control.monitor import BufferingState, PlaybackSample

from .conftest import events, start_playback


@pytest.fixture
def playing(agent, video, scheduler):
    """Tracked video that has started playing with a full buffer."""
    video.set_buffered((0.0, 100.0))
    agent.activate(video)
    start_playback(video, scheduler)
    return video


def _sampled(telemetry):
    return [name for name, _ in events(telemetry, "update", "waiting", "playing")]


def test_ids_are_assigned_in_order_and_tagged(agent, window, video):
    second = window.document.body.append_child(VideoElement())

    assert agent.activate("video") is True
    handle = agent.monitor.track(second)

    assert handle.id == 1
    assert video.get_attribute("data-vid") == "0"
    assert second.get_attribute("data-vid") == "1"
    assert agent.monitor.track(video).id == 0


def test_activate_waits_for_a_selector(agent, window):
    assert agent.activate("#late") is False

    late = window.document.body.append_child(VideoElement(id="late"))

    assert agent.monitor.handle(0).element is late


def test_activate_rejects_other_values(agent):
    assert agent.activate(None) is False
    assert agent.monitor.handles == {}


def test_metadata_is_reported_once(agent, video, telemetry):
    agent.activate(video)
    video.load_metadata(1920, 1080, 100.0)
    video.load_metadata(1280, 720, 100.0)

    metadata = events(telemetry, "metadata")
    assert len(metadata) == 1
    name, payload = metadata[0]
    assert payload["width"] == 1920
    assert payload["height"] == 1080
    assert payload["duration"] == 100.0
    assert payload["id"] == 0
    assert payload["now"] == 1700000000500


def test_a_failing_frame_does_not_end_sampling(agent, playing, scheduler, telemetry, monkeypatch, caplog):
    original = playing.get_video_playback_quality
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise TimeoutError("page did not answer")
        return original()

    monkeypatch.setattr(playing, "get_video_playback_quality", flaky)
    before = len(events(telemetry, "update"))

    playing.advance(0.5, frames=12)
    scheduler.advance_frame()
    assert len(events(telemetry, "update")) == before
    assert "Sampling video 0 failed" in caplog.text

    playing.advance(0.5, frames=12)
    scheduler.advance_frame()

    name, payload = events(telemetry, "update")[-1]
    assert payload["time"] == 1.0
    assert agent.monitor.handle(0).sampling is True


def test_sampling_starts_on_playing_and_reports_updates(playing, scheduler, telemetry):
    assert events(telemetry, "playing") == [
        ("playing", {"id": 0, "time": 0.0, "frame": 0, "buffered": 100.0, "now": 1700000000500}),
    ]

    playing.advance(0.5, frames=12)
    scheduler.advance_frame()

    name, payload = events(telemetry, "update")[-1]
    assert payload["time"] == 0.5
    assert payload["frame"] == 12
    assert payload["buffered"] == 100.0


def test_no_sampling_before_playback(agent, video, scheduler, telemetry):
    agent.activate(video)
    video.load_metadata(640, 360, 100.0)
    scheduler.advance_frame(5)

    assert _sampled(telemetry) == []
    assert scheduler.pending_frames == 0


def test_stall_and_resume(playing, scheduler, telemetry, agent):
    playing.advance(0.5)
    scheduler.advance_frame()
    scheduler.advance_frame()
    assert agent.monitor.handle(0).buffering_state is BufferingState.BUFFERING

    # Still stalled: no second waiting
    scheduler.advance_frame()

    playing.advance(0.2)
    scheduler.advance_frame()

    assert _sampled(telemetry) == ["playing", "update", "waiting", "playing"]
    assert agent.monitor.handle(0).buffering_state is BufferingState.IDLE


def test_no_waiting_without_timeupdate_since_last_stall(playing, scheduler, telemetry):
    scheduler.advance_frame(3)
    assert _sampled(telemetry) == ["playing"]

    playing.advance(0.5)
    scheduler.advance_frame()
    scheduler.advance_frame()
    playing.advance(0.5)
    scheduler.advance_frame()
    # Resumed; the timeupdate of the stall was consumed
    scheduler.advance_frame(3)

    assert _sampled(telemetry) == ["playing", "update", "waiting", "playing"]


def test_waiting_and_playing_alternate(playing, scheduler, telemetry):
    steps = random.Random(7)
    for _ in range(200):
        if steps.random() < 0.6:
            playing.advance(0.05)
        scheduler.advance_frame()

    transitions = [name for name in _sampled(telemetry)[1:] if name != "update"]
    assert transitions
    assert transitions[0] == "waiting"
    assert all(a != b for a, b in zip(transitions, transitions[1:]))


def test_buffer_pause_once_then_buffer_play(playing, scheduler, telemetry, agent):
    playing.set_buffered((0.0, 10.0))
    playing.advance(8.5)
    scheduler.advance_frame()
    assert events(telemetry, "bufferPause") == []

    playing.advance(0.6)
    scheduler.advance_frame()
    playing.advance(0.2)
    scheduler.advance_frame()

    assert len(events(telemetry, "bufferPause")) == 1
    assert agent.monitor.handle(0).awaiting_resume

    playing.set_buffered((0.0, 30.0))
    scheduler.advance_frame()
    scheduler.advance_frame()

    assert [name for name, _ in events(telemetry, "bufferPause", "bufferPlay")] == ["bufferPause", "bufferPlay"]
    assert not agent.monitor.handle(0).awaiting_resume


def test_no_buffer_pause_near_the_natural_end(agent, video, scheduler, telemetry):
    video.load_metadata(1920, 1080, 10.0)
    video.set_buffered((0.0, 10.0))
    agent.activate(video)
    start_playback(video, scheduler)

    video.advance(9.5)
    scheduler.advance_frame()

    assert events(telemetry, "bufferPause") == []


def test_detached_video_is_released_and_loop_stops(playing, scheduler, telemetry, agent):
    playing.advance(0.5)
    scheduler.advance_frame()
    count = len(telemetry.entries())

    playing.remove()
    scheduler.advance_frame(3)

    assert agent.monitor.handle(0) is None
    assert scheduler.pending_frames == 0
    assert playing.listener_count("timeupdate") == 0
    assert len(telemetry.entries()) == count


def test_native_events(playing, scheduler, telemetry):
    playing.pause()
    scheduler.run_pending()
    name, payload = events(telemetry, "waiting")[-1]
    assert payload["id"] == 0

    playing.play()
    scheduler.run_pending()
    playing.advance(500.0)

    assert [name for name, _ in events(telemetry, "ended")] == ["ended"]
    assert events(telemetry, "ended")[0][1]["time"] == 100.0


def test_fullscreen_sets_active_player(agent, video, window, telemetry):
    agent.activate(video)

    video.request_fullscreen()
    assert agent.active_player is agent.monitor.handle(0)

    window.document.exit_fullscreen()

    assert [payload["value"] for _, payload in events(telemetry, "fullscreen")] == [True, False]
    assert agent.active_player is agent.monitor.handle(0)


def test_is_playing(agent, video, scheduler):
    agent.activate(video)
    monitor = agent.monitor
    assert not monitor.is_playing(video)

    start_playback(video, scheduler)
    assert monitor.is_playing(video)

    video.ready_state = 2
    assert not monitor.is_playing(video)
    video.ready_state = 4

    video.current_time = 12.0
    assert not monitor.is_playing(video)
    scheduler.run_pending()
    assert monitor.is_playing(video)


def test_videos_snapshot(playing, agent):
    assert agent.videos() == [
        {"id": 0, "playing": True, "buffering": "idle", "awaiting_resume": False, "active": False},
    ]


def test_sample_to_dict():
    sample = PlaybackSample(position=3.5, frame_count=80, buffered_end=12.0)
    assert sample.to_dict() == {"time": 3.5, "frame": 80, "buffered": 12.0}
