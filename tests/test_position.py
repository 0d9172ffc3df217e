# -*- coding: utf-8 -*-
"""Tests for absolute element positions across nested frames."""

import math

from playback_control.dom import Element, Rect, VideoElement
from playback_control.frame_protocol import FrameProtocol
from playback_control.position import Position, PositionResolver


def _collect():
    results = []
    return results, results.append


def test_top_level_element_keeps_its_own_box(window, video):
    results, done = _collect()
    PositionResolver(window).bbox(video, done)

    assert results == [Rect(10, 20, 640, 360)]


def test_same_origin_frames_add_their_iframe_offsets(window, scheduler):
    middle = window.embed(rect=Rect(100, 50, 800, 600)).content_window
    inner = middle.embed(rect=Rect(30, 40, 400, 300)).content_window
    element = inner.document.body.append_child(Element("button", rect=Rect(5, 6, 20, 10)))

    results, done = _collect()
    PositionResolver(inner).bbox(element, done)

    assert results == [Rect(135, 96, 20, 10)]
    assert PositionResolver(inner).local_frame_position() == Position(130, 90)


def test_locates_own_iframe_among_siblings(window):
    window.embed(rect=Rect(0, 0, 10, 10))
    second = window.embed(rect=Rect(300, 200, 10, 10)).content_window

    assert PositionResolver(second).local_frame_position() == Position(300, 200)


def test_cross_origin_without_protocol_returns_partial_sum(window):
    middle = window.embed("https://cdn.example", rect=Rect(100, 50, 800, 600)).content_window
    inner = middle.embed(rect=Rect(30, 40, 400, 300)).content_window

    results, done = _collect()
    PositionResolver(inner).frame_position(done)

    assert results == [Position(30, 40)]


def _serve(window):
    """Run a position-answering protocol endpoint in ``window``."""
    protocol = FrameProtocol(window)
    PositionResolver(window, protocol)
    protocol.listen()
    return protocol


def test_cross_origin_asks_parent_over_the_protocol(window, scheduler):
    _serve(window)
    child = window.embed("https://cdn.example", rect=Rect(100, 50, 800, 600)).content_window
    element = child.document.body.append_child(VideoElement(rect=Rect(10, 10, 320, 180)))

    results, done = _collect()
    PositionResolver(child, FrameProtocol(child)).bbox(element, done)
    assert results == []
    scheduler.run_pending()

    assert results == [Rect(110, 60, 320, 180)]


def test_each_origin_boundary_is_resolved_by_the_frame_above_it(window, scheduler):
    _serve(window)
    middle = window.embed("https://cdn.example", rect=Rect(100, 50, 800, 600)).content_window
    _serve(middle)
    inner = middle.embed("https://drm.example", rect=Rect(30, 40, 400, 300)).content_window

    results, done = _collect()
    PositionResolver(inner, FrameProtocol(inner)).frame_position(done)
    scheduler.run_pending()

    assert results == [Position(130, 90)]


def test_same_origin_ancestors_are_walked_before_asking(window, scheduler):
    _serve(window)
    middle = window.embed("https://cdn.example", rect=Rect(100, 50, 800, 600)).content_window
    inner = middle.embed("https://cdn.example", rect=Rect(30, 40, 400, 300)).content_window

    results, done = _collect()
    PositionResolver(inner, FrameProtocol(inner)).frame_position(done)
    scheduler.run_pending()

    # The middle frame runs no responder; its own window asks the top
    assert results == [Position(130, 90)]
    assert middle.listener_count("message") == 0


def test_nan_protocol_reply_keeps_partial_sum(window, scheduler):
    _serve(window)
    child = window.embed("https://cdn.example", rect=Rect(100, 50, 800, 600)).content_window
    # The parent no longer lists the hosting iframe
    window.document.body.remove_child(window.document.query_selector("iframe"))

    results, done = _collect()
    PositionResolver(child, FrameProtocol(child)).frame_position(done)
    scheduler.run_pending()

    assert results == [Position(0, 0)]


def test_unknown_selector_and_invalid_target_give_nan(window):
    resolver = PositionResolver(window)
    results, done = _collect()
    resolver.bbox("#missing", done)
    resolver.bbox(42, done)
    resolver.resolve_position("#missing", done)

    assert len(results) == 3
    assert all(math.isnan(result.x) and math.isnan(result.y) for result in results)


def test_resolve_position_can_wait_for_the_element(window):
    results, done = _collect()
    PositionResolver(window).resolve_position("#late", done, wait=True)
    assert results == []

    window.document.body.append_child(Element("div", rect=Rect(7, 8, 1, 1), id="late"))

    assert results == [Position(7, 8)]


def test_report_click_target_reports_once_and_drops_listener(window):
    reports, report = _collect()
    resolver = PositionResolver(window)
    resolver.report_click_target(".consent", report)

    button = window.document.body.append_child(Element("button", rect=Rect(50, 60, 100, 30), class_="consent"))
    assert reports == [Rect(50, 60, 100, 30)]
    assert button.listener_count("click") == 1

    button.click(trusted=True)
    assert button.listener_count("click") == 0
    assert reports == [Rect(50, 60, 100, 30)]
