from __future__ import annotations

import threading
import time

import mido
import pytest


class RecordingSink:
    """InputSink that remembers what it was asked to deliver and when."""

    def __init__(self, fail_on=None):
        self.deliveries = []
        self.fail_on = set(fail_on or ())
        self.delivered = threading.Event()
        self._lock = threading.Lock()

    def deliver(self, payload, time_to_next):
        with self._lock:
            index = len(self.deliveries)
            self.deliveries.append((payload, time_to_next, time.monotonic()))
        self.delivered.set()
        if index in self.fail_on:
            raise RuntimeError(f"boom at {index}")

    @property
    def payloads(self):
        return [p for p, _, _ in self.deliveries]


def note_track(*messages, name=None):
    track = mido.MidiTrack()
    if name:
        track.append(mido.MetaMessage('track_name', name=name, time=0))
    track.extend(messages)
    return track


def on(note, time=0, velocity=64, channel=0):
    return mido.Message('note_on', note=note, velocity=velocity, channel=channel, time=time)


def off(note, time=0, channel=0, velocity=0, as_note_on=False):
    if as_note_on:
        return mido.Message('note_on', note=note, velocity=0, channel=channel, time=time)
    return mido.Message('note_off', note=note, velocity=velocity, channel=channel, time=time)


def tempo(value, time=0):
    return mido.MetaMessage('set_tempo', tempo=value, time=time)


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def write_midi(tmp_path):
    def _write(tracks, ticks_per_beat=480, filename="song.mid"):
        mid = mido.MidiFile(ticks_per_beat=ticks_per_beat)
        for track in tracks:
            mid.tracks.append(track)
        path = tmp_path / filename
        mid.save(str(path))
        return str(path)
    return _write
