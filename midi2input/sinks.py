"""Input sinks: the only place that touches the OS input layer.

pynput picks its backend (win32, darwin, xorg, uinput) when it is imported, so
the controllers are created lazily and the scheduler/analyzer stay importable
on hosts without a display.
"""
from __future__ import annotations

import math
import random
import sys
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from midi2input.errors import DeliveryError, PickTimeoutError
from midi2input.keymap import parse_key_combo
from midi2input.scheduler import Category, InputSink, KeyPayload, MousePayload, Payload

MODIFIER_GAP = 0.005
MODIFIER_SETTLE = 0.010
KEY_HOLD = 0.001
MODIFIER_RELEASE_GAP = 0.030

COORDINATE_JITTER = 5
PICK_TIMEOUT = 30.0


class KeyboardSink:
    """Taps "modifier+key" combos through a pynput keyboard controller."""

    def __init__(self, controller=None, keys=None, platform: str = sys.platform):
        if controller is None or keys is None:
            from pynput.keyboard import Controller, Key
            controller = controller or Controller()
            keys = keys or Key
        self.keyboard = controller
        self.keys = keys
        self.platform = platform

    def _resolve_modifier(self, name: str):
        # Shortcuts written as "ctrl+x" mean Command on macOS.
        if name == 'ctrl' and self.platform == 'darwin':
            name = 'cmd'
        return getattr(self.keys, name)

    def deliver(self, payload: Payload, time_to_next: float) -> None:
        if not isinstance(payload, KeyPayload):
            raise DeliveryError(f"Keyboard sink cannot deliver {payload!r}")
        modifier_names, main_key = parse_key_combo(payload.combo)
        modifiers = [self._resolve_modifier(name) for name in modifier_names]
        pressed = []
        failure: Optional[Exception] = None
        try:
            for modifier in modifiers:
                self.keyboard.press(modifier)
                pressed.append(modifier)
                time.sleep(MODIFIER_GAP)
            if modifiers: time.sleep(MODIFIER_SETTLE)

            self.keyboard.press(main_key)
            time.sleep(KEY_HOLD)
            self.keyboard.release(main_key)

            if modifiers: time.sleep(MODIFIER_SETTLE)
        except Exception as e:
            failure = e

        # Modifiers held down would leak into the user's own typing, so they are
        # released even after a failed press.
        for modifier in reversed(pressed):
            try:
                self.keyboard.release(modifier)
            except Exception as e:
                failure = failure or e
            time.sleep(MODIFIER_RELEASE_GAP)

        if failure is not None:
            raise DeliveryError(f"Failed to press '{payload.combo}': {failure}") from failure


def bezier_path(start: Tuple[int, int], end: Tuple[int, int], steps: int,
                rng: Optional[random.Random] = None) -> List[Tuple[int, int]]:
    """Quadratic Bézier from ``start`` to ``end`` through a random control point near the midpoint."""
    rng = rng or random
    steps = max(steps, 1)
    (x0, y0), (x2, y2) = start, end
    distance = math.hypot(x2 - x0, y2 - y0)
    spread = max(int(distance * 0.2), 10)
    control = np.array([(x0 + x2) // 2 + rng.randint(-spread, spread),
                        (y0 + y2) // 2 + rng.randint(-spread, spread)], dtype=float)

    t = np.linspace(0.0, 1.0, steps + 1)[:, np.newaxis]
    p0, p2 = np.array(start, dtype=float), np.array(end, dtype=float)
    points = (1 - t) ** 2 * p0 + 2 * (1 - t) * t * control + t ** 2 * p2
    path = [(int(x), int(y)) for x, y in points]
    path[-1] = (int(x2), int(y2))
    return path


def movement_profile(distance: float, time_to_next: float) -> Tuple[int, Tuple[int, int], float]:
    """(steps, per-step delay range in ms, reaction pause in s) for the time left before the next click."""
    if time_to_next < 0.05:
        return 1, (0, 0), 0.0
    if time_to_next < 0.15:
        return 5, (0, 1), 0.005
    steps = min(max(int(distance / 20.0), 5), 30)
    return steps, (1, 3), 0.020


class MouseSink:
    """Glides to (x, y) along a jittered Bézier path and left-clicks."""

    def __init__(self, controller=None, button=None, rng: Optional[random.Random] = None):
        if controller is None or button is None:
            from pynput.mouse import Button, Controller
            controller = controller or Controller()
            button = button or Button.left
        self.mouse = controller
        self.button = button
        self.rng = rng or random.Random()

    def _click(self):
        self.mouse.click(self.button)

    def deliver(self, payload: Payload, time_to_next: float) -> None:
        if not isinstance(payload, MousePayload):
            raise DeliveryError(f"Mouse sink cannot deliver {payload!r}")
        try:
            current = tuple(int(v) for v in self.mouse.position)
            target = (payload.x + self.rng.randint(-COORDINATE_JITTER, COORDINATE_JITTER),
                      payload.y + self.rng.randint(-COORDINATE_JITTER, COORDINATE_JITTER))
            distance = math.hypot(target[0] - current[0], target[1] - current[1])
            steps, (low_ms, high_ms), reaction = movement_profile(distance, time_to_next)
            for point in bezier_path(current, target, steps, self.rng):
                self.mouse.position = point
                if high_ms > 0:
                    delay_ms = self.rng.randint(low_ms, high_ms)
                    if delay_ms: time.sleep(delay_ms / 1000.0)
            if reaction: time.sleep(reaction)
            self._click()
        except Exception as e:
            raise DeliveryError(f"Failed to click at ({payload.x}, {payload.y}): {e}") from e


class WindowTargetSink:
    """Brings a specific window to the front before every delivery.

    ``activate`` comes from whatever window layer the host provides; it should
    raise if the window is gone.
    """

    def __init__(self, inner: InputSink, activate: Callable[[], None], settle: float = 0.05):
        self.inner = inner
        self.activate = activate
        self.settle = settle

    def deliver(self, payload: Payload, time_to_next: float) -> None:
        try:
            self.activate()
        except Exception as e:
            raise DeliveryError(f"Could not activate target window: {e}") from e
        if self.settle: time.sleep(self.settle)
        self.inner.deliver(payload, time_to_next)


def default_sinks(activate: Optional[Callable[[], None]] = None) -> Dict[Category, InputSink]:
    keyboard: InputSink = KeyboardSink()
    mouse: InputSink = MouseSink()
    if activate is not None:
        keyboard, mouse = WindowTargetSink(keyboard, activate), WindowTargetSink(mouse, activate)
    return {Category.KEYBOARD: keyboard, Category.MOUSE: mouse}


def pick_coordinate(timeout: float = PICK_TIMEOUT, listener_factory=None) -> Tuple[int, int]:
    """Waits for the next left click anywhere on screen and returns its position."""
    if listener_factory is None:
        from pynput.mouse import Listener
        listener_factory = Listener

    picked: Dict[str, Tuple[int, int]] = {}
    done = threading.Event()

    def on_click(x, y, button, pressed):
        if pressed and getattr(button, 'name', None) == 'left':
            picked['position'] = (int(x), int(y))
            done.set()
            return False
        return None

    listener = listener_factory(on_click=on_click)
    listener.start()
    try:
        if not done.wait(timeout):
            raise PickTimeoutError(f"No mouse click within {timeout:g} seconds")
        return picked['position']
    finally:
        listener.stop()
