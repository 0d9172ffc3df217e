# -*- coding: utf-8 -*-
"""Tests for the REST API over a running agent loop."""

import threading

import pytest
from fastapi.testclient import TestClient

from playback_control.api import create_api
from playback_control.config import Config
from playback_control.dom import Element, Rect, VideoElement, Window
from playback_control.runner import AgentRunner, GestureResponder


class InMemoryPage:
    """Builds a one-video page on the agent loop."""

    def __init__(self):
        self.window = None
        self.video = None

    def build(self, scheduler):
        self.window = Window("https://player.example", scheduler=scheduler)
        self.video = VideoElement(rect=Rect(0, 0, 640, 360), requires_user_gesture=True)
        self.window.document.body.append_child(self.video)
        return self.window

    def click(self, x, y):
        self.window.document.body.click(trusted=True)


@pytest.fixture
def page():
    return InMemoryPage()


@pytest.fixture
def runner(page, tmp_path):
    settings = Config(data_dir=tmp_path, command_timeout=5.0, frame_interval=0.005)
    runner = AgentRunner(page.build, settings)
    agent = runner.start(timeout=5.0)
    assert runner.call(agent.activate, "video").result(5.0) is True
    runner.call(page.video.load_metadata, 1920, 1080, 60.0).result(5.0)
    yield runner
    runner.stop()


@pytest.fixture
def responder(runner, page):
    responder = GestureResponder(runner, page.click, lambda: (0.0, 0.0))
    responder.attach()
    return responder


@pytest.fixture
def client(runner, responder):
    return TestClient(create_api(runner))


def _on_loop(runner, fn, *args):
    return runner.call(fn, *args).result(5.0)


def test_list_videos(client):
    response = client.get("/videos")

    assert response.status_code == 200
    assert response.json() == [
        {"id": 0, "playing": False, "buffering": "idle", "awaiting_resume": False, "active": False},
    ]


def test_status(client):
    response = client.get("/status")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "running"
    assert body["url"] is None
    assert body["active_player"] is None
    assert len(body["videos"]) == 1


def test_play_then_is_playing(client, runner, page):
    response = client.post("/videos/0/play")

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert _on_loop(runner, lambda: page.video.paused) is False

    response = client.get("/videos/0/playing")
    assert response.json()["data"] == {"value": True}


def test_pause_after_play(client, runner, page):
    client.post("/videos/0/play")
    response = client.post("/videos/0/pause")

    assert response.status_code == 200
    assert _on_loop(runner, lambda: page.video.paused) is True


def test_set_volume_and_muted(client, runner, page):
    assert client.post("/videos/0/volume", json={"level": 0.3}).status_code == 200
    assert client.post("/videos/0/muted", json={"muted": True}).status_code == 200

    assert _on_loop(runner, lambda: page.video.volume) == 0.3
    assert _on_loop(runner, lambda: page.video.muted) is True


def test_seek(client, runner, page):
    response = client.post("/videos/0/time", json={"position_seconds": 12.0})

    assert response.status_code == 200
    assert _on_loop(runner, lambda: page.video.current_time) == 12.0


def test_request_validation(client):
    assert client.post("/videos/0/volume", json={"level": 3}).status_code == 422
    assert client.post("/videos/0/time", json={"position_seconds": -1}).status_code == 422


def test_unknown_video_is_404(client):
    response = client.get("/videos/5/playing")

    assert response.status_code == 404
    assert response.json()["detail"]["name"] == "TARGET_NOT_FOUND"


def test_wire_commands(client, runner, page):
    assert client.post("/command/volume:0", json={"value": 0.5}).status_code == 200
    assert client.post("/command/volume:0", json={"value": 2}).status_code == 422
    assert client.post("/command/rewind:0").status_code == 400
    assert client.post("/command/volume").status_code == 422
    assert _on_loop(runner, lambda: page.video.volume) == 0.5


def test_events_record_telemetry_and_gesture_requests(client):
    client.post("/videos/0/volume", json={"level": 0.4})

    events = client.get("/events").json()["events"]
    names = [event["name"] for event in events]
    assert "metadata" in names
    assert "doUserInteraction.0" in names

    latest = events[-1]["seq"]
    assert client.get("/events", params={"since": latest}).json()["events"] == []


def test_position(client):
    assert client.get("/position", params={"selector": "video"}).json() == \
        {"x": 0.0, "y": 0.0, "width": 640.0, "height": 360.0}
    assert client.get("/position", params={"selector": ".missing"}).json() == \
        {"x": None, "y": None, "width": None, "height": None}
    assert client.get("/position", params={"selector": "div > p"}).status_code == 400


def test_pending_command_times_out_without_a_gesture(runner):
    runner.config.command_timeout = 0.2
    client = TestClient(create_api(runner))

    response = client.post("/videos/0/pause")

    assert response.status_code == 504
    assert _on_loop(runner, lambda: runner.agent.gate.pending) == 1


def test_responder_clicks_the_active_player(runner, responder, page):
    assert _on_loop(runner, responder.target) == (0.0, 0.0)

    _on_loop(runner, page.video.request_fullscreen)

    assert _on_loop(runner, responder.target) == (320.0, 180.0)


class FramedPage(InMemoryPage):
    """Same page with the video inside an embedded frame."""

    def build(self, scheduler):
        top = Window("https://player.example", scheduler=scheduler)
        self.window = top.embed(rect=Rect(100, 50, 800, 450)).content_window
        self.video = VideoElement(rect=Rect(0, 0, 640, 360), requires_user_gesture=True)
        self.window.document.body.append_child(self.video)
        return self.window


def test_responder_clicks_in_top_frame_coordinates(tmp_path):
    page = FramedPage()
    runner = AgentRunner(page.build, Config(data_dir=tmp_path, frame_interval=0.005))
    agent = runner.start(timeout=5.0)
    try:
        assert _on_loop(runner, agent.activate, "video") is True
        responder = GestureResponder(runner, page.click, lambda: (0.0, 0.0))
        _on_loop(runner, page.video.request_fullscreen)

        assert _on_loop(runner, responder.target) == (420.0, 230.0)
    finally:
        runner.stop()


class RecordingBrowser:
    """Browser stand-in recording trusted clicks."""

    def __init__(self):
        self.clicks = []

    def mouse_click(self, x, y):
        self.clicks.append((x, y))

    def get_current_url(self):
        return "https://player.example/watch/1"


def test_click_target_waits_for_the_element_and_clicks_it(runner, page):
    browser = RecordingBrowser()
    client = TestClient(create_api(runner, browser))

    def add_button():
        page.window.document.body.append_child(Element("button", rect=Rect(50, 60, 100, 30), class_="consent"))

    timer = threading.Timer(0.1, runner.call, args=(add_button,))
    timer.start()
    try:
        response = client.post("/click-target", params={"selector": ".consent"})
    finally:
        timer.cancel()

    assert response.status_code == 200
    assert response.json() == {"x": 50.0, "y": 60.0, "width": 100.0, "height": 30.0, "clicked": True}
    assert browser.clicks == [(100.0, 75.0)]


def test_click_target_without_browser_only_reports(client):
    response = client.post("/click-target", params={"selector": "video"})

    assert response.status_code == 200
    assert response.json() == {"x": 0.0, "y": 0.0, "width": 640.0, "height": 360.0, "clicked": False}
    assert client.post("/click-target", params={"selector": "div > p"}).status_code == 400
