from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from midi2input.analyzer import DEFAULT_MIN_NOTE, NoteEvent, is_black_key, note_name
from midi2input.errors import DeliveryError
from midi2input.scheduler import KeyPayload, TimedEvent

MODIFIER_ALIASES = {
    'shift': 'shift',
    'ctrl': 'ctrl', 'control': 'ctrl',
    'alt': 'alt',
    'meta': 'cmd', 'cmd': 'cmd', 'command': 'cmd', 'win': 'cmd', 'super': 'cmd',
}


def parse_key_combo(combo: str) -> Tuple[List[str], str]:
    """Splits "shift+a" into (['shift'], 'a'). Modifiers are normalised to shift/ctrl/alt/cmd."""
    parts = combo.split('+')
    if len(parts) > 1 and parts[-1] == '' and parts[-2] == '':
        # "+" or "ctrl++": the main key is '+' itself
        parts = parts[:-2] + ['+']
    *modifier_parts, main_key = parts
    modifiers = []
    for part in modifier_parts:
        name = MODIFIER_ALIASES.get(part.strip().lower())
        if name is None:
            raise DeliveryError(f"Unknown modifier key: {part}")
        modifiers.append(name)
    if len(main_key) != 1:
        raise DeliveryError(f"Invalid main key: {main_key!r}")
    return modifiers, main_key


class KeyMapper:
    # Three octaves of white keys, low to high, starting at C3 (48).
    WHITE_ROWS = ("zxcvbnm", "asdfghj", "qwertyu")

    def __init__(self, note_to_key: Optional[Dict[int, str]] = None, fold_octaves: bool = False):
        self.key_map = dict(note_to_key) if note_to_key else self.default_layout()
        self.fold_octaves = fold_octaves
        self.min_note, self.max_note = min(self.key_map), max(self.key_map)

    @classmethod
    def default_layout(cls, base_note: int = DEFAULT_MIN_NOTE) -> Dict[int, str]:
        white_keys = "".join(cls.WHITE_ROWS)
        layout: Dict[int, str] = {}
        white_index = 0
        for note in range(base_note, base_note + 12 * len(cls.WHITE_ROWS)):
            if is_black_key(note):
                layout[note] = f"shift+{white_keys[white_index - 1]}"
            else:
                layout[note] = white_keys[white_index]
                white_index += 1
        return layout

    def key_for_note(self, note: int) -> Optional[str]:
        if note in self.key_map or not self.fold_octaves:
            return self.key_map.get(note)
        folded = note
        while folded < self.min_note: folded += 12
        while folded > self.max_note: folded -= 12
        return self.key_map.get(folded)


def build_key_events(events: Iterable[NoteEvent], mapper: KeyMapper, transpose: int = 0, octave: int = 0,
                     speed: float = 1.0, tracks: Optional[Sequence[int]] = None,
                     debug_log: Optional[List[str]] = None) -> List[TimedEvent]:
    """Turns the NoteOn side of an analysis into keyboard TimedEvents, in time order."""
    def _log(msg):
        if debug_log is not None: debug_log.append(f"[KeyMap] {msg}")

    if speed <= 0:
        raise ValueError(f"speed must be positive, got {speed}")
    shift = transpose + 12 * octave
    timed: List[TimedEvent] = []
    skipped = 0
    for event in events:
        if not event.is_note_on: continue
        if tracks is not None and event.track not in tracks: continue
        note = event.note + shift
        key = mapper.key_for_note(note)
        if key is None:
            skipped += 1
            _log(f"  {note_name(note):<4} at {event.time:8.4f}s -> SKIPPED (no key in layout)")
            continue
        timed.append(TimedEvent(time=event.time / speed, payload=KeyPayload(key), duration=event.duration / speed))
    timed.sort(key=lambda e: e.time)
    _log(f"Built {len(timed)} key event(s), skipped {skipped}.")
    return timed
