# -*- coding: utf-8 -*-
"""Tests for running actions inside a user gesture."""

from playback_control.dom import VideoElement
from playback_control.gate import InteractionGate

from .conftest import user_click


def test_action_runs_once_on_the_next_click(window, host, telemetry):
    gate = InteractionGate(window.document, host)
    calls = []
    gate.run_on_next_user_gesture(lambda: calls.append("action"))

    assert calls == []
    assert gate.pending == 1
    assert telemetry.names() == ["doUserInteraction.0"]

    user_click(window)
    user_click(window)

    assert calls == ["action"]
    assert gate.pending == 0
    assert window.document.listener_count("click") == 0


def test_click_is_swallowed_before_page_handlers(window, host):
    gate = InteractionGate(window.document, host)
    page = []
    window.document.body.add_event_listener("click", lambda e: page.append("body"), True)
    window.document.body.add_event_listener("click", lambda e: page.append("bubble"))
    gate.run_on_next_user_gesture(lambda: None)

    event = user_click(window)

    assert event.default_prevented
    assert page == []

    user_click(window)
    assert page == ["body", "bubble"]


def test_two_pending_actions_both_run_on_one_click(window, host, telemetry):
    gate = InteractionGate(window.document, host)
    calls = []
    gate.run_on_next_user_gesture(lambda: calls.append(1))
    gate.run_on_next_user_gesture(lambda: calls.append(2))

    assert telemetry.names() == ["doUserInteraction.0", "doUserInteraction.0"]

    user_click(window)
    user_click(window)

    assert calls == [1, 2]


def test_action_runs_with_user_activation(window, host, scheduler):
    video = window.document.body.append_child(VideoElement(requires_user_gesture=True))
    video.load_metadata(640, 360, 60.0)
    gate = InteractionGate(window.document, host)
    results = []
    gate.run_on_next_user_gesture(lambda: results.append(video.play()))

    assert video.play() is False
    user_click(window)

    assert results == [True]
    assert not video.paused


def test_action_never_runs_without_a_click(window, host, scheduler):
    gate = InteractionGate(window.document, host)
    calls = []
    gate.run_on_next_user_gesture(lambda: calls.append(1))

    scheduler.advance_frame(10)

    assert calls == []
    assert gate.pending == 1
