"""Tests for the playback scheduler: ordering, timing, single-flight and cancellation."""

import threading
import time

import pytest

from conftest import RecordingSink
from midi2input.errors import PlaybackInProgressError
from midi2input.scheduler import (
    LAST_EVENT_GAP,
    Category,
    KeyPayload,
    MousePayload,
    PlaybackManager,
    TimedEvent,
)


def key_events(*times):
    return [TimedEvent(t, KeyPayload(chr(ord('a') + i))) for i, t in enumerate(times)]


@pytest.fixture
def sinks():
    return {Category.KEYBOARD: RecordingSink(), Category.MOUSE: RecordingSink()}


@pytest.fixture
def manager(sinks):
    log = []
    mgr = PlaybackManager(sinks, on_log=log.append)
    mgr.log = log
    yield mgr
    mgr.stop_all(timeout=5)


class TestDispatch:
    def test_events_delivered_in_input_order(self, manager, sinks):
        manager.start(Category.KEYBOARD, key_events(0.0, 0.01, 0.02))
        assert manager.wait(Category.KEYBOARD, timeout=5)
        assert [p.combo for p in sinks[Category.KEYBOARD].payloads] == ["a", "b", "c"]

    def test_input_is_not_resorted(self, manager, sinks):
        manager.start(Category.KEYBOARD, key_events(0.02, 0.0))
        assert manager.wait(Category.KEYBOARD, timeout=5)
        assert [p.combo for p in sinks[Category.KEYBOARD].payloads] == ["a", "b"]

    def test_never_dispatched_early(self, manager, sinks):
        before = time.monotonic()
        manager.start(Category.KEYBOARD, key_events(0.0, 0.1))
        assert manager.wait(Category.KEYBOARD, timeout=5)
        stamps = [stamp for _, _, stamp in sinks[Category.KEYBOARD].deliveries]
        assert stamps[1] - before >= 0.095

    def test_time_to_next(self, manager, sinks):
        manager.start(Category.KEYBOARD, key_events(0.0, 0.03))
        assert manager.wait(Category.KEYBOARD, timeout=5)
        gaps = [gap for _, gap, _ in sinks[Category.KEYBOARD].deliveries]
        assert gaps[0] == pytest.approx(0.03)
        assert gaps[1] == LAST_EVENT_GAP

    def test_delivery_failure_is_logged_and_playback_continues(self, sinks):
        log = []
        failing = RecordingSink(fail_on={0})
        mgr = PlaybackManager({Category.KEYBOARD: failing}, on_log=log.append)
        mgr.start(Category.KEYBOARD, key_events(0.0, 0.01))
        assert mgr.wait(Category.KEYBOARD, timeout=5)
        assert len(failing.deliveries) == 2
        assert any("boom at 0" in line for line in log)
        assert log[-1] == "[Scheduler] keyboard: finished"

    def test_returns_to_idle_after_completion(self, manager):
        finished = []
        manager.on_finished = lambda category, completed: finished.append((category, completed))
        manager.start(Category.KEYBOARD, key_events(0.0))
        assert manager.wait(Category.KEYBOARD, timeout=5)
        assert not manager.is_active(Category.KEYBOARD)
        assert finished == [(Category.KEYBOARD, True)]
        manager.start(Category.KEYBOARD, key_events(0.0))
        assert manager.wait(Category.KEYBOARD, timeout=5)

    def test_empty_event_list(self, manager):
        manager.start(Category.KEYBOARD, [])
        assert manager.wait(Category.KEYBOARD, timeout=5)
        assert not manager.is_active(Category.KEYBOARD)

    def test_lead_in_delays_first_event(self, manager, sinks):
        before = time.monotonic()
        manager.start(Category.KEYBOARD, key_events(0.0), lead_in=0.1)
        assert manager.wait(Category.KEYBOARD, timeout=5)
        assert sinks[Category.KEYBOARD].deliveries[0][2] - before >= 0.095

    def test_unbound_category(self):
        mgr = PlaybackManager({Category.KEYBOARD: RecordingSink()})
        with pytest.raises(ValueError):
            mgr.start(Category.MOUSE, [])


class TestSingleFlight:
    def test_second_start_rejected(self, manager, sinks):
        manager.start(Category.KEYBOARD, key_events(0.2))
        with pytest.raises(PlaybackInProgressError):
            manager.start(Category.KEYBOARD, key_events(0.0))
        # The first session carries on untouched.
        assert manager.is_active(Category.KEYBOARD)
        assert manager.wait(Category.KEYBOARD, timeout=5)
        assert [p.combo for p in sinks[Category.KEYBOARD].payloads] == ["a"]

    def test_categories_are_independent(self, manager, sinks):
        manager.start(Category.KEYBOARD, key_events(0.2))
        manager.start(Category.MOUSE, [TimedEvent(0.0, MousePayload(10, 20))])
        assert manager.is_active(Category.KEYBOARD)
        assert manager.wait(Category.MOUSE, timeout=5)
        assert sinks[Category.MOUSE].payloads == [MousePayload(10, 20)]
        assert manager.wait(Category.KEYBOARD, timeout=5)


class TestStop:
    def test_stop_interrupts_pending_wait(self, manager, sinks):
        sink = sinks[Category.KEYBOARD]
        manager.start(Category.KEYBOARD, key_events(0.0, 5.0))
        assert sink.delivered.wait(5)
        began = time.monotonic()
        assert manager.stop(Category.KEYBOARD) is True
        assert time.monotonic() - began < 2.0
        assert len(sink.deliveries) == 1
        assert not manager.is_active(Category.KEYBOARD)

    def test_restart_immediately_after_stop(self, manager, sinks):
        manager.start(Category.KEYBOARD, key_events(5.0))
        manager.stop(Category.KEYBOARD)
        manager.start(Category.KEYBOARD, key_events(0.0))
        assert manager.wait(Category.KEYBOARD, timeout=5)
        assert [p.combo for p in sinks[Category.KEYBOARD].payloads] == ["a"]

    def test_stop_when_idle_is_noop(self, manager):
        assert manager.stop(Category.KEYBOARD) is True
        assert manager.stop(Category.KEYBOARD) is True

    def test_stop_reports_unfinished_worker(self):
        # A delivery that blocks cannot be interrupted; the slot stays taken until it returns.
        release = threading.Event()
        entered = threading.Event()

        class BlockingSink:
            def deliver(self, payload, time_to_next):
                entered.set()
                release.wait(5)

        mgr = PlaybackManager({Category.KEYBOARD: BlockingSink()})
        mgr.start(Category.KEYBOARD, key_events(0.0, 0.0))
        assert entered.wait(5)
        assert mgr.stop(Category.KEYBOARD, timeout=0.05) is False
        with pytest.raises(PlaybackInProgressError):
            mgr.start(Category.KEYBOARD, [])
        release.set()
        assert mgr.wait(Category.KEYBOARD, timeout=5)
        mgr.start(Category.KEYBOARD, [])
        assert mgr.wait(Category.KEYBOARD, timeout=5)

    def test_stop_from_inside_delivery(self):
        log, results = [], []

        class StoppingSink:
            def deliver(self, payload, time_to_next):
                results.append(mgr.stop(Category.KEYBOARD))

        mgr = PlaybackManager({Category.KEYBOARD: StoppingSink()}, on_log=log.append)
        mgr.start(Category.KEYBOARD, key_events(0.0, 0.0))
        assert mgr.wait(Category.KEYBOARD, timeout=5)
        assert results == [True]
        assert not any("still running" in line for line in log)
        assert log[-1] == "[Scheduler] keyboard: stopped"

    def test_stopped_session_reports_not_completed(self, manager):
        finished = []
        manager.on_finished = lambda category, completed: finished.append(completed)
        manager.start(Category.KEYBOARD, key_events(5.0))
        manager.stop(Category.KEYBOARD)
        assert finished == [False]
        assert manager.log[-1] == "[Scheduler] keyboard: stopped"

    def test_stop_does_not_touch_other_category(self, manager, sinks):
        manager.start(Category.MOUSE, [TimedEvent(0.1, MousePayload(1, 2))])
        manager.start(Category.KEYBOARD, key_events(5.0))
        manager.stop(Category.KEYBOARD)
        assert manager.wait(Category.MOUSE, timeout=5)
        assert sinks[Category.MOUSE].payloads == [MousePayload(1, 2)]
