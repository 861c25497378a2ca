"""Exception hierarchy for midi2input."""

from __future__ import annotations


class Midi2InputError(Exception):
    """Base exception for all midi2input errors."""


class MidiInputError(Midi2InputError, IOError):
    """The MIDI file is missing, unreadable, or uses an unsupported timing mode.

    Fatal to an analysis call; no partial result is produced.
    """


class PlaybackInProgressError(Midi2InputError):
    """A playback session is already running for the requested category."""


class DeliveryError(Midi2InputError):
    """A single input event could not be delivered (bad key string, OS refusal)."""


class PickTimeoutError(Midi2InputError, TimeoutError):
    """No coordinate was picked before the wait expired."""
