"""MIDI to keyboard/mouse playback engine."""

from midi2input.analyzer import (
    AnalysisResult,
    NoteEvent,
    RangeSummary,
    TrackAnalysis,
    TrackInfo,
    analyze_midi,
    analyze_midi_file,
)
from midi2input.errors import (
    DeliveryError,
    Midi2InputError,
    MidiInputError,
    PickTimeoutError,
    PlaybackInProgressError,
)
from midi2input.keymap import KeyMapper, build_key_events
from midi2input.scheduler import (
    Category,
    KeyPayload,
    MousePayload,
    PlaybackManager,
    TimedEvent,
)
from midi2input.tempo import TempoChange, TempoMap

__version__ = "0.3.0"
