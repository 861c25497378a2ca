from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

import mido
import numpy as np

from midi2input.errors import MidiInputError
from midi2input.tempo import TempoMap

DEFAULT_MIN_NOTE = 48
DEFAULT_MAX_NOTE = 83

PITCH_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]
BLACK_PITCH_CLASSES = {1, 3, 6, 8, 10}
WHITE_PITCH_CLASSES = (0, 2, 4, 5, 7, 9, 11)

BLACK_KEY_MODES = ("none", "auto_sharp")

# (first note, last note, label) on an 88-key piano, Helmholtz naming.
NOTE_GROUPS = [
    (21, 23, "Sub-contra octave (A₂-B₂)"),
    (24, 35, "Contra octave (C₁-B₁)"),
    (36, 47, "Great octave (C-B)"),
    (48, 59, "Small octave (c-b)"),
    (60, 71, "One-line octave (c¹-b¹)"),
    (72, 83, "Two-line octave (c²-b²)"),
    (84, 95, "Three-line octave (c³-b³)"),
    (96, 107, "Four-line octave (c⁴-b⁴)"),
    (108, 108, "Five-line octave (c⁵)"),
]


@dataclass
class NoteEvent:
    """One edge of a reconstructed note. NoteOn/NoteOff pairs share note, channel, track and end."""
    time: float
    kind: str  # 'note_on' or 'note_off'
    note: int
    channel: int
    track: int
    velocity: int
    duration: float
    end: float

    @property
    def is_note_on(self) -> bool:
        return self.kind == 'note_on'


@dataclass
class TrackAnalysis:
    max_note: Optional[int]
    min_note: Optional[int]
    max_note_name: str = ""
    min_note_name: str = ""
    max_note_group: str = ""
    min_note_group: str = ""
    upper_over_limit: int = 0
    lower_over_limit: int = 0
    is_max_over_limit: bool = False
    is_min_over_limit: bool = False
    suggested_max: Optional[Tuple[int, int]] = None  # (transpose, octave)
    suggested_min: Optional[Tuple[int, int]] = None


@dataclass
class TrackInfo:
    id: int
    name: str
    note_count: int
    analysis: TrackAnalysis


@dataclass
class RangeSummary:
    min_note: Optional[int]
    max_note: Optional[int]
    under_min_count: int
    over_max_count: int
    min_note_name: str = ""
    max_note_name: str = ""

    @property
    def total_over_limit_count(self) -> int:
        return self.under_min_count + self.over_max_count


@dataclass
class AnalysisResult:
    events: List[NoteEvent]
    summary: RangeSummary
    tracks: List[TrackInfo] = field(default_factory=list)
    ticks_per_beat: int = 480
    tempo_map: Optional[TempoMap] = None

    @property
    def note_ons(self) -> List[NoteEvent]:
        return [e for e in self.events if e.is_note_on]

    @property
    def duration(self) -> float:
        return max((e.end for e in self.events), default=0.0)


# ---------------------------------------------------------------------------
# Note naming
# ---------------------------------------------------------------------------

def note_name(note: int) -> str:
    octave = (note // 12) - 1
    return f"{PITCH_NAMES[note % 12]}{octave}"


def note_group(note: int) -> str:
    for low, high, label in NOTE_GROUPS:
        if low <= note <= high: return label
    return "Unknown"


def is_black_key(note: int) -> bool:
    return note % 12 in BLACK_PITCH_CLASSES


# ---------------------------------------------------------------------------
# Black-key remapping
# ---------------------------------------------------------------------------

def nearest_white_pitch_class(pitch_class: int) -> int:
    """Nearest white pitch class; on a tie the lower one wins because it is scanned first."""
    pitch_class %= 12
    if pitch_class not in BLACK_PITCH_CLASSES:
        return pitch_class
    best_pc, best_dist = 0, 12
    for white_pc in WHITE_PITCH_CLASSES:
        dist = abs(pitch_class - white_pc)
        if dist < best_dist:
            best_pc, best_dist = white_pc, dist
    return best_pc


def remap_black_key(note: int) -> int:
    pitch_class = note % 12
    return note - pitch_class + nearest_white_pitch_class(pitch_class)


def apply_black_key_mode(events: List[NoteEvent], mode: str) -> List[NoteEvent]:
    if mode not in BLACK_KEY_MODES:
        raise ValueError(f"Unknown black key mode '{mode}', expected one of {BLACK_KEY_MODES}")
    if mode == 'none':
        return events
    return [replace(e, note=remap_black_key(e.note)) if is_black_key(e.note) else e for e in events]


# ---------------------------------------------------------------------------
# Transpose suggestion
# ---------------------------------------------------------------------------

def _suggestion_score(transpose: int, octave: int) -> float:
    score = float(abs(transpose) + abs(octave))
    # 5-7 semitones (fourth, tritone, fifth) are the transpositions players expect.
    if 5 <= abs(transpose) <= 7:
        score -= 0.5
    return score


def suggest_transpose(diff: int, current_transpose: int = 0, current_octave: int = 0) -> Tuple[int, int]:
    """Best (transpose, octave) pair bringing a note ``diff`` semitones back into range."""
    candidates = []
    for octave_shift in (-2, -1, 0, 1, 2):
        transpose = current_transpose + diff - 12 * octave_shift
        octave = current_octave + octave_shift
        candidates.append((transpose, octave))
    # min() keeps the first of equal scores, i.e. the lowest octave shift.
    return min(candidates, key=lambda c: _suggestion_score(*c))


# ---------------------------------------------------------------------------
# Range analysis
# ---------------------------------------------------------------------------

def analyze_track_range(notes: Sequence[int], min_note: int, max_note: int,
                        current_transpose: int = 0, current_octave: int = 0) -> TrackAnalysis:
    """Range statistics for one track.

    ``max_note``/``min_note`` and their names describe the file as written. Limit counts,
    over-limit flags and suggestions are measured on the pitches as they will sound with
    the current transpose/octave applied, so a suggestion never counts that shift twice.
    """
    pitches = np.asarray(notes, dtype=np.int64)
    if pitches.size == 0:
        return TrackAnalysis(max_note=None, min_note=None)

    local_max, local_min = int(pitches.max()), int(pitches.min())
    played = pitches + current_transpose + 12 * current_octave
    played_max, played_min = int(played.max()), int(played.min())
    analysis = TrackAnalysis(
        max_note=local_max, min_note=local_min,
        max_note_name=note_name(local_max), min_note_name=note_name(local_min),
        max_note_group=note_group(local_max), min_note_group=note_group(local_min),
        upper_over_limit=int((played > max_note).sum()),
        lower_over_limit=int((played < min_note).sum()),
        is_max_over_limit=not (min_note <= played_max <= max_note),
        is_min_over_limit=not (min_note <= played_min <= max_note),
    )
    if analysis.is_max_over_limit:
        analysis.suggested_max = suggest_transpose(max_note - played_max, current_transpose, current_octave)
    if analysis.is_min_over_limit:
        analysis.suggested_min = suggest_transpose(min_note - played_min, current_transpose, current_octave)
    return analysis


def summarize_range(events: Sequence[NoteEvent], min_note: int = DEFAULT_MIN_NOTE,
                    max_note: int = DEFAULT_MAX_NOTE) -> RangeSummary:
    lowest: Optional[int] = None
    highest: Optional[int] = None
    under = over = 0
    for event in events:
        if not event.is_note_on: continue
        if lowest is None or event.note < lowest: lowest = event.note
        if highest is None or event.note > highest: highest = event.note
        if event.note < min_note: under += 1
        if event.note > max_note: over += 1
    return RangeSummary(
        min_note=lowest, max_note=highest, under_min_count=under, over_max_count=over,
        min_note_name=note_name(lowest) if lowest is not None else "",
        max_note_name=note_name(highest) if highest is not None else "",
    )


# ---------------------------------------------------------------------------
# Reconstruction
# ---------------------------------------------------------------------------

def _note_pair(note: int, channel: int, track: int, velocity: int,
               start: float, end: float) -> Tuple[NoteEvent, NoteEvent]:
    duration = end - start
    return (NoteEvent(start, 'note_on', note, channel, track, velocity, duration, end),
            NoteEvent(end, 'note_off', note, channel, track, 0, 0.0, end))


def reconstruct_notes(tracks: Sequence[Sequence[mido.Message]], tempo_map: TempoMap,
                      debug_log: Optional[List[str]] = None) -> List[NoteEvent]:
    """Pairs NoteOn/NoteOff per (channel, note) in every track and returns them time-sorted."""
    def _log(msg):
        if debug_log is not None: debug_log.append(f"[Parser] {msg}")

    events: List[NoteEvent] = []
    for track_index, track in enumerate(tracks):
        current_tick = 0
        active: Dict[Tuple[int, int], Tuple[int, int]] = {}
        for msg in track:
            current_tick += msg.time
            if msg.type == 'note_on' and msg.velocity > 0:
                active[(msg.channel, msg.note)] = (current_tick, msg.velocity)
            elif msg.type == 'note_off' or msg.type == 'note_on':
                opened = active.pop((msg.channel, msg.note), None)
                if opened is None:
                    _log(f"  Track {track_index}: stray note off {msg.note} (ch {msg.channel}) at tick {current_tick} ignored")
                    continue
                start_tick, velocity = opened
                events.extend(_note_pair(msg.note, msg.channel, track_index, velocity,
                                         tempo_map.tick_to_seconds(start_tick),
                                         tempo_map.tick_to_seconds(current_tick)))
        if active:
            _log(f"  Track {track_index}: {len(active)} note(s) never released, dropped")

    events.sort(key=lambda e: e.time)
    _log(f"Reconstructed {len(events) // 2} notes.")
    return events


def collect_tempo_changes(tracks: Sequence[Sequence[mido.Message]]) -> List[Tuple[int, int]]:
    changes: List[Tuple[int, int]] = []
    for track in tracks:
        current_tick = 0
        for msg in track:
            current_tick += msg.time
            if msg.type == 'set_tempo':
                changes.append((current_tick, msg.tempo))
    return changes


def _track_name(track: Sequence[mido.Message], index: int) -> str:
    name = None
    for msg in track:
        if msg.type == 'track_name' and msg.name:
            name = msg.name  # last one wins
    return name or f"Track {index}"


def analyze_tracks(tracks: Sequence[Sequence[mido.Message]], ticks_per_beat: int,
                   min_note: int = DEFAULT_MIN_NOTE, max_note: int = DEFAULT_MAX_NOTE,
                   black_key_mode: str = 'none', current_transpose: int = 0, current_octave: int = 0,
                   debug_log: Optional[List[str]] = None) -> AnalysisResult:
    def _log(msg):
        if debug_log is not None: debug_log.append(f"[Analyzer] {msg}")

    if black_key_mode not in BLACK_KEY_MODES:
        raise ValueError(f"Unknown black key mode '{black_key_mode}', expected one of {BLACK_KEY_MODES}")

    tempo_map = TempoMap.build(collect_tempo_changes(tracks), ticks_per_beat)
    _log(f"Tempo map ({len(tempo_map)} segment(s)):")
    for line in tempo_map.describe():
        _log(f"  {line}")

    track_infos: List[TrackInfo] = []
    for index, track in enumerate(tracks):
        notes = [msg.note for msg in track if msg.type == 'note_on' and msg.velocity > 0]
        if not notes: continue
        analysis = analyze_track_range(notes, min_note, max_note, current_transpose, current_octave)
        info = TrackInfo(id=index, name=_track_name(track, index), note_count=len(notes), analysis=analysis)
        track_infos.append(info)
        _log(f"  Track {index} '{info.name}': {info.note_count} notes, "
             f"range {analysis.min_note_name}-{analysis.max_note_name}, "
             f"{analysis.lower_over_limit} below / {analysis.upper_over_limit} above limits")

    events = reconstruct_notes(tracks, tempo_map, debug_log)
    events = apply_black_key_mode(events, black_key_mode)
    summary = summarize_range(events, min_note, max_note)
    _log(f"Global range {summary.min_note_name or '-'}..{summary.max_note_name or '-'}, "
         f"{summary.total_over_limit_count} note(s) outside {note_name(min_note)}..{note_name(max_note)}")
    return AnalysisResult(events=events, summary=summary, tracks=track_infos,
                          ticks_per_beat=ticks_per_beat, tempo_map=tempo_map)


def analyze_midi(mid: mido.MidiFile, min_note: int = DEFAULT_MIN_NOTE, max_note: int = DEFAULT_MAX_NOTE,
                 black_key_mode: str = 'none', current_transpose: int = 0, current_octave: int = 0,
                 debug_log: Optional[List[str]] = None) -> AnalysisResult:
    ticks_per_beat = mid.ticks_per_beat
    # The top bit of the header division marks SMPTE (timecode) timing.
    if ticks_per_beat & 0x8000:
        raise MidiInputError("SMPTE timecode timing is not supported")
    if ticks_per_beat <= 0:
        raise MidiInputError(f"Invalid ticks per beat: {ticks_per_beat}")
    return analyze_tracks(mid.tracks, ticks_per_beat, min_note, max_note, black_key_mode,
                          current_transpose, current_octave, debug_log)


def analyze_midi_file(path: str, min_note: int = DEFAULT_MIN_NOTE, max_note: int = DEFAULT_MAX_NOTE,
                      black_key_mode: str = 'none', current_transpose: int = 0, current_octave: int = 0,
                      debug_log: Optional[List[str]] = None) -> AnalysisResult:
    if not os.path.exists(path):
        raise MidiInputError(f"File not found: {path}")
    try:
        mid = mido.MidiFile(path)
    except Exception as e:
        raise MidiInputError(f"Could not read or parse MIDI file: {e}") from e
    if debug_log is not None:
        debug_log.append(f"[Parser] Opened {path} ({len(mid.tracks)} tracks, {mid.ticks_per_beat} ticks per beat)")
    return analyze_midi(mid, min_note, max_note, black_key_mode, current_transpose, current_octave, debug_log)
