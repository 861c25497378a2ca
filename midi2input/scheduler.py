from __future__ import annotations

import enum
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Union

from midi2input.errors import PlaybackInProgressError

LAST_EVENT_GAP = 1.0  # time_to_next handed to the sink for the final event


class Category(enum.Enum):
    KEYBOARD = 'keyboard'
    MOUSE = 'mouse'


@dataclass(frozen=True)
class KeyPayload:
    combo: str  # e.g. "a", "shift+a", "ctrl+c"


@dataclass(frozen=True)
class MousePayload:
    x: int
    y: int


Payload = Union[KeyPayload, MousePayload]


@dataclass
class TimedEvent:
    """An input event due ``time`` seconds after the session starts."""
    time: float
    payload: Payload
    duration: float = 0.0


class InputSink(Protocol):
    def deliver(self, payload: Payload, time_to_next: float) -> None:
        """Delivers one payload; raises DeliveryError on failure."""


@dataclass
class PlaybackSession:
    """Single-flight slot for one category: the live worker and its cancel flag."""
    lock: threading.Lock = field(default_factory=threading.Lock)
    worker: Optional[threading.Thread] = None
    cancel: threading.Event = field(default_factory=threading.Event)

    @property
    def is_active(self) -> bool:
        with self.lock:
            return self.worker is not None


class PlaybackManager:
    """Replays timed event lists against input sinks, one session per category.

    Categories are independent: a keyboard session and a mouse session may run
    at the same time, but each category admits only one worker. Cancellation is
    cooperative; the worker waits on its cancel event instead of sleeping, so
    ``stop`` takes effect in the middle of a wait, but never in the middle of a
    delivery.
    """

    def __init__(self, sinks: Dict[Category, InputSink],
                 on_log: Optional[Callable[[str], None]] = None,
                 on_finished: Optional[Callable[[Category, bool], None]] = None):
        self.sinks = dict(sinks)
        self.on_log = on_log
        self.on_finished = on_finished
        self._sessions: Dict[Category, PlaybackSession] = {category: PlaybackSession() for category in Category}

    def _log(self, msg: str):
        if self.on_log is not None: self.on_log(f"[Scheduler] {msg}")

    def session(self, category: Category) -> PlaybackSession:
        return self._sessions[category]

    def is_active(self, category: Category) -> bool:
        return self._sessions[category].is_active

    def start(self, category: Category, events: Sequence[TimedEvent], lead_in: float = 0.0):
        """Starts replaying ``events`` (already sorted by time) and returns immediately."""
        if category not in self.sinks:
            raise ValueError(f"No input sink bound for {category.value} playback")
        session = self._sessions[category]
        with session.lock:
            if session.worker is not None:
                raise PlaybackInProgressError(f"{category.value.capitalize()} playback already in progress")
            cancel = threading.Event()
            worker = threading.Thread(target=self._run, args=(category, list(events), cancel, lead_in),
                                      name=f"midi2input-{category.value}", daemon=True)
            session.cancel = cancel
            session.worker = worker
            self._log(f"{category.value}: started, {len(events)} event(s)")
            worker.start()

    def stop(self, category: Category, timeout: Optional[float] = None) -> bool:
        """Cancels the category's session and waits for its worker.

        Idempotent. Returns False only when ``timeout`` expired with the worker
        still running; its slot stays occupied until it really exits.
        """
        session = self._sessions[category]
        with session.lock:
            session.cancel.set()
            worker = session.worker
        if worker is None:
            return True
        if worker is threading.current_thread():
            # Called from a sink or on_finished; the worker exits once this returns.
            return True
        worker.join(timeout)
        if worker.is_alive():
            self._log(f"{category.value}: worker still running after {timeout}s")
            return False
        return True

    def stop_all(self, timeout: Optional[float] = None) -> bool:
        results = [self.stop(category, timeout) for category in Category]
        return all(results)

    def wait(self, category: Category, timeout: Optional[float] = None) -> bool:
        """Blocks until the category is idle. Returns False on timeout."""
        session = self._sessions[category]
        with session.lock:
            worker = session.worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()

    def _run(self, category: Category, events: List[TimedEvent], cancel: threading.Event, lead_in: float):
        sink = self.sinks[category]
        start = time.monotonic() + max(lead_in, 0.0)
        completed = False
        try:
            for index, event in enumerate(events):
                if cancel.is_set(): break
                remaining = event.time - (time.monotonic() - start)
                if remaining > 0 and cancel.wait(remaining):
                    break
                if cancel.is_set(): break

                time_to_next = events[index + 1].time - event.time if index + 1 < len(events) else LAST_EVENT_GAP
                try:
                    sink.deliver(event.payload, time_to_next)
                except Exception as e:
                    self._log(f"{category.value}: event {index} at {event.time:.3f}s failed: {e}")
            else:
                completed = True
        finally:
            session = self._sessions[category]
            with session.lock:
                if session.worker is threading.current_thread():
                    session.worker = None
            self._log(f"{category.value}: {'finished' if completed else 'stopped'}")
            if self.on_finished is not None:
                self.on_finished(category, completed)
