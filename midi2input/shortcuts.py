from __future__ import annotations

import time
from typing import Callable, Dict, List, Optional

DEBOUNCE_DELAY = 0.3  # seconds

ACTIONS = ("START_PAUSE", "STOP", "PREV_SONG", "NEXT_SONG")

_MODIFIERS = {
    'commandorcontrol': '<ctrl>', 'cmdorctrl': '<ctrl>', 'control': '<ctrl>', 'ctrl': '<ctrl>',
    'shift': '<shift>',
    'alt': '<alt>', 'option': '<alt>',
    'command': '<cmd>', 'cmd': '<cmd>', 'super': '<cmd>', 'meta': '<cmd>',
}
_NAMED_KEYS = {
    'space': '<space>', 'enter': '<enter>', 'return': '<enter>', 'escape': '<esc>', 'esc': '<esc>',
    'tab': '<tab>', 'backspace': '<backspace>', 'delete': '<delete>', 'home': '<home>', 'end': '<end>',
    'pageup': '<page_up>', 'pagedown': '<page_down>',
    'up': '<up>', 'down': '<down>', 'left': '<left>', 'right': '<right>',
}


def to_pynput_hotkey(accelerator: str) -> str:
    """'CommandOrControl+Shift+P' -> '<ctrl>+<shift>+p'."""
    parts = [p.strip() for p in accelerator.split('+') if p.strip()]
    if not parts:
        raise ValueError(f"Empty shortcut: {accelerator!r}")
    converted = []
    for index, part in enumerate(parts):
        lower = part.lower()
        is_last = index == len(parts) - 1
        if not is_last:
            if lower not in _MODIFIERS:
                raise ValueError(f"Unknown modifier '{part}' in shortcut {accelerator!r}")
            converted.append(_MODIFIERS[lower])
        elif lower in _NAMED_KEYS:
            converted.append(_NAMED_KEYS[lower])
        elif len(lower) > 1 and lower[0] == 'f' and lower[1:].isdigit():
            converted.append(f"<{lower}>")
        elif len(lower) == 1:
            converted.append(lower)
        else:
            raise ValueError(f"Unknown key '{part}' in shortcut {accelerator!r}")
    return '+'.join(converted)


class ShortcutService:
    """Global hotkeys for the player, each action debounced independently."""

    def __init__(self, hotkeys_factory=None, clock: Callable[[], float] = time.monotonic,
                 debug_log: Optional[List[str]] = None):
        self.hotkeys_factory = hotkeys_factory
        self.clock = clock
        self.debug_log = debug_log
        self.registered: Dict[str, str] = {}  # action -> pynput hotkey
        self._last_trigger: Dict[str, float] = {}
        self._listener = None

    def _log(self, msg):
        if self.debug_log is not None: self.debug_log.append(f"[Shortcuts] {msg}")

    def _debounced(self, action: str, handler: Callable[[], None]) -> Callable[[], None]:
        def fire():
            now = self.clock()
            last = self._last_trigger.get(action)
            if last is not None and now - last < DEBOUNCE_DELAY:
                self._log(f"{action} ignored ({(now - last) * 1000:.0f} ms since last trigger)")
                return
            self._last_trigger[action] = now
            self._log(f"{action} triggered")
            handler()
        return fire

    def register(self, shortcuts: Dict[str, str], handlers: Dict[str, Callable[[], None]]):
        """Binds each configured action accelerator to its handler and starts listening."""
        self.unregister_all()
        bindings: Dict[str, Callable[[], None]] = {}
        registered: Dict[str, str] = {}
        for action in ACTIONS:
            accelerator = shortcuts.get(action)
            if not accelerator or action not in handlers: continue
            hotkey = to_pynput_hotkey(accelerator)
            if hotkey in bindings:
                raise ValueError(f"Shortcut {accelerator!r} is bound to more than one action")
            bindings[hotkey] = self._debounced(action, handlers[action])
            registered[action] = hotkey
        if not bindings:
            return
        factory = self.hotkeys_factory
        if factory is None:
            from pynput.keyboard import GlobalHotKeys
            factory = GlobalHotKeys
        self._listener = factory(bindings)
        self._listener.start()
        self.registered = registered
        for action, hotkey in registered.items():
            self._log(f"Registered {action} -> {hotkey}")

    def unregister_all(self):
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
        if self.registered:
            self._log(f"Unregistered {len(self.registered)} shortcut(s)")
        self.registered.clear()
        self._last_trigger.clear()

    def reregister(self, shortcuts: Dict[str, str], handlers: Dict[str, Callable[[], None]]):
        self.register(shortcuts, handlers)
