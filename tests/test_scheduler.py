# -*- coding: utf-8 -*-
"""Tests for the cooperative schedulers."""

import asyncio

from playback_control.scheduler import STOP, AsyncioScheduler, ManualScheduler, vsync_interval


def test_run_pending_drains_tasks_queued_while_running():
    scheduler = ManualScheduler()
    calls = []

    def first():
        calls.append("first")
        scheduler.call_soon(lambda: calls.append("second"))

    scheduler.call_soon(first)
    assert scheduler.run_pending() == 2
    assert calls == ["first", "second"]
    assert scheduler.pending_tasks == 0


def test_frames_requested_during_a_frame_wait_for_the_next():
    scheduler = ManualScheduler()
    calls = []

    def frame():
        calls.append(len(calls))
        scheduler.request_frame(frame)

    scheduler.request_frame(frame)
    scheduler.advance_frame()
    assert calls == [0]
    scheduler.advance_frame(2)
    assert calls == [0, 1, 2]


def test_vsync_interval_stops_when_callback_returns_stop():
    scheduler = ManualScheduler()
    ticks = []

    def tick():
        ticks.append(1)
        return STOP if len(ticks) == 3 else None

    vsync_interval(scheduler, tick)
    scheduler.advance_frame(5)
    assert len(ticks) == 3
    assert scheduler.pending_frames == 0


def test_asyncio_scheduler_runs_frames_on_the_loop():
    loop = asyncio.new_event_loop()
    try:
        scheduler = AsyncioScheduler(loop, frame_interval=0.001)
        ticks = []

        def tick():
            ticks.append(1)
            if len(ticks) == 3:
                loop.stop()
                return STOP
            return None

        scheduler.call_soon(lambda: vsync_interval(scheduler, tick))
        loop.run_forever()
        assert len(ticks) == 3
    finally:
        loop.close()
