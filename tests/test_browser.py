# -*- coding: utf-8 -*-
"""Tests for BrowserManager over a recording session."""

import pytest

from playback_control.browser import BrowserManager
from playback_control.config import Config


class RecordingSession:
    """Connected session answering from a method -> result table."""

    endpoint = "ws://127.0.0.1:9222/devtools/page/1"
    is_connected = True

    def __init__(self, results=None):
        self.results = results or {}
        self.requests = []
        self.closed = False

    def request(self, method, params=None, timeout=10.0):
        self.requests.append((method, params or {}))
        return self.results.get(method, {})

    def wait_event(self, method, timeout=10.0):
        raise TimeoutError(method)

    def close(self):
        self.closed = True


@pytest.fixture
def browser(tmp_path):
    return BrowserManager(Config(data_dir=tmp_path))


def test_request_requires_a_session(browser):
    with pytest.raises(RuntimeError):
        browser.request("Page.enable")


def test_mouse_click_dispatches_trusted_input(browser):
    session = browser.connect(session=RecordingSession())

    browser.mouse_click(320.0, 180.0)

    assert [params["type"] for _, params in session.requests] == ["mouseMoved", "mousePressed", "mouseReleased"]
    assert all(method == "Input.dispatchMouseEvent" for method, _ in session.requests)
    assert session.requests[1][1]["button"] == "left"
    assert session.requests[1][1]["clickCount"] == 1


def test_viewport_center(browser):
    browser.connect(session=RecordingSession({
        "Page.getLayoutMetrics": {"cssLayoutViewport": {"clientWidth": 1280, "clientHeight": 720}},
    }))

    assert browser.viewport_center() == (640.0, 360.0)


def test_current_url(browser):
    browser.connect(session=RecordingSession({
        "Page.getNavigationHistory": {
            "currentIndex": 1,
            "entries": [{"url": "about:blank"}, {"url": "https://player.example/watch/1"}],
        },
    }))

    assert browser.get_current_url() == "https://player.example/watch/1"


def test_navigation_error_raises(browser):
    browser.connect(session=RecordingSession({"Page.navigate": {"errorText": "net::ERR_NAME_NOT_RESOLVED"}}))

    with pytest.raises(RuntimeError, match="ERR_NAME_NOT_RESOLVED"):
        browser.navigate("https://nowhere.invalid")


def test_navigation_tolerates_missing_load_event(browser):
    session = browser.connect(session=RecordingSession())

    browser.navigate("https://player.example", timeout=0.1)

    assert session.requests == [("Page.navigate", {"url": "https://player.example"})]


def test_close_closes_the_session(browser):
    session = browser.connect(session=RecordingSession())

    browser.close()

    assert session.closed
    assert browser.session is None
    assert ("Browser.close", {}) in session.requests
