from __future__ import annotations

import json
import os
import sys
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional

from midi2input.analyzer import BLACK_KEY_MODES, DEFAULT_MAX_NOTE, DEFAULT_MIN_NOTE

APP_DIR_NAME = "midi2input"
CONFIG_FILE_NAME = "config.json"


@dataclass
class Settings:
    min_note: int = DEFAULT_MIN_NOTE
    max_note: int = DEFAULT_MAX_NOTE
    black_key_mode: str = 'none'
    note_to_key: Dict[int, str] = field(default_factory=dict)
    shortcuts: Dict[str, str] = field(default_factory=dict)
    midi_folder_path: Optional[str] = None
    theme: str = 'default'
    speed: float = 100.0  # percent of the original tempo
    countdown: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        known = {f.name for f in fields(cls)}
        settings = cls(**{k: v for k, v in data.items() if k in known})
        # JSON object keys are always strings.
        settings.note_to_key = {int(k): str(v) for k, v in (settings.note_to_key or {}).items()}
        settings.shortcuts = dict(settings.shortcuts or {})
        if settings.black_key_mode not in BLACK_KEY_MODES:
            settings.black_key_mode = 'none'
        return settings

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['note_to_key'] = {str(k): v for k, v in self.note_to_key.items()}
        return data


def default_config_dir() -> str:
    if sys.platform == 'win32':
        base = os.environ.get('APPDATA') or os.path.expanduser('~')
    elif sys.platform == 'darwin':
        base = os.path.expanduser('~/Library/Application Support')
    else:
        base = os.environ.get('XDG_CONFIG_HOME') or os.path.expanduser('~/.config')
    return os.path.join(base, APP_DIR_NAME)


class SettingsManager:
    """Loads and saves Settings as JSON. A missing or corrupt file yields the defaults."""

    def __init__(self, path: Optional[str] = None, debug_log: Optional[List[str]] = None):
        self.path = path or os.path.join(default_config_dir(), CONFIG_FILE_NAME)
        self.debug_log = debug_log

    def _log(self, msg):
        if self.debug_log is not None: self.debug_log.append(f"[Settings] {msg}")

    def load(self) -> Settings:
        if not os.path.exists(self.path):
            self._log(f"No settings file at {self.path}, using defaults.")
            return Settings()
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("top level is not an object")
            return Settings.from_dict(data)
        except (OSError, ValueError, TypeError) as e:
            self._log(f"Could not load {self.path} ({e}), using defaults.")
            return Settings()

    def save(self, **changes: Any) -> Settings:
        """Merges ``changes`` over the stored settings and writes the result.

        Dict fields (note_to_key, shortcuts) are merged key by key.
        """
        settings = self.load()
        for name, value in changes.items():
            if not hasattr(settings, name):
                raise KeyError(f"Unknown setting '{name}'")
            current = getattr(settings, name)
            if isinstance(current, dict) and isinstance(value, dict):
                current.update(value)
            else:
                setattr(settings, name, value)
        settings = Settings.from_dict(settings.to_dict())

        os.makedirs(os.path.dirname(self.path) or '.', exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(settings.to_dict(), f, indent=2, ensure_ascii=False)
        self._log(f"Saved settings to {self.path}")
        return settings
