from __future__ import annotations

from typing import Iterable, List, NamedTuple, Tuple

import mido

DEFAULT_TEMPO = 500000  # µs per beat, 120 BPM


class TempoChange(NamedTuple):
    tick: int
    tempo: int


class TempoMap:
    """Ordered tick -> tempo schedule used to turn ticks into seconds.

    Built from the raw ``set_tempo`` events of every track. Entries are
    strictly increasing in tick and there is always one at tick 0.
    """

    def __init__(self, changes: List[TempoChange], ticks_per_beat: int):
        if ticks_per_beat <= 0:
            raise ValueError(f"ticks_per_beat must be positive, got {ticks_per_beat}")
        self.changes = changes
        self.ticks_per_beat = ticks_per_beat

    @classmethod
    def build(cls, raw_changes: Iterable[Tuple[int, int]], ticks_per_beat: int) -> "TempoMap":
        # sorted() is stable, so among same-tick entries the scan order survives
        # and the last one seen replaces the earlier ones.
        ordered = sorted((TempoChange(int(t), int(v)) for t, v in raw_changes), key=lambda c: c.tick)
        unique: List[TempoChange] = []
        for change in ordered:
            if unique and unique[-1].tick == change.tick:
                unique[-1] = change
            else:
                unique.append(change)
        if not unique or unique[0].tick > 0:
            unique.insert(0, TempoChange(0, DEFAULT_TEMPO))
        return cls(unique, ticks_per_beat)

    def _segment_seconds(self, tick_delta: int, tempo: int) -> float:
        return (tick_delta * tempo) / (self.ticks_per_beat * 1_000_000.0)

    def tick_to_seconds(self, tick: int) -> float:
        seconds = 0.0
        last_tick, last_tempo = 0, DEFAULT_TEMPO
        for change in self.changes:
            if change.tick > tick:
                break
            seconds += self._segment_seconds(change.tick - last_tick, last_tempo)
            last_tick, last_tempo = change.tick, change.tempo
        return seconds + self._segment_seconds(tick - last_tick, last_tempo)

    def tempo_at(self, tick: int) -> int:
        for change in reversed(self.changes):
            if tick >= change.tick: return change.tempo
        return self.changes[0].tempo

    def describe(self) -> List[str]:
        return [f"tick {c.tick:>7}: {mido.tempo2bpm(c.tempo):7.2f} BPM ({c.tempo} µs/beat)" for c in self.changes]

    def __len__(self) -> int:
        return len(self.changes)
