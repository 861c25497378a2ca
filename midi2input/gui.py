#!/usr/bin/env python3
#
# midi2input: analyse a MIDI file and play it back as keystrokes.
#
import os
import sys
from typing import List, Optional

from PyQt6.QtCore import QObject, Qt, pyqtSignal as Signal
from PyQt6.QtGui import QFontDatabase, QGuiApplication
from PyQt6.QtWidgets import (QApplication, QCheckBox, QComboBox, QDoubleSpinBox, QFileDialog, QGridLayout,
                             QGroupBox, QHBoxLayout, QHeaderView, QLabel, QMainWindow, QMessageBox, QPlainTextEdit,
                             QPushButton, QSpinBox, QTableWidget, QTableWidgetItem, QTabWidget, QVBoxLayout,
                             QWidget)

from midi2input.analyzer import BLACK_KEY_MODES, AnalysisResult, analyze_midi_file, note_name
from midi2input.config import Settings, SettingsManager
from midi2input.errors import MidiInputError, PlaybackInProgressError
from midi2input.keymap import KeyMapper, build_key_events
from midi2input.scheduler import Category, PlaybackManager
from midi2input.shortcuts import ShortcutService
from midi2input.sinks import default_sinks

MIDI_EXTENSIONS = ('.mid', '.midi')
COUNTDOWN_SECONDS = 3.0
LOG_LINE_LIMIT = 5000


class Bridge(QObject):
    """Carries callbacks from worker and hotkey threads onto the GUI thread."""
    log_message = Signal(str)
    playback_finished = Signal(bool)
    shortcut = Signal(str)


class MainWindow(QMainWindow):
    def __init__(self, settings_manager: Optional[SettingsManager] = None):
        super().__init__()
        self.setWindowTitle("midi2input")
        self.setMinimumWidth(620)
        self.bridge = Bridge()
        self.settings_manager = settings_manager or SettingsManager()
        self.settings = self.settings_manager.load()
        self.analysis: Optional[AnalysisResult] = None
        self.midi_path: Optional[str] = None

        self.manager = PlaybackManager(default_sinks(), on_log=self.bridge.log_message.emit,
                                       on_finished=lambda category, done: self.bridge.playback_finished.emit(done))
        self.shortcuts = ShortcutService()

        self._setup_ui()
        self.bridge.log_message.connect(self.add_log_message)
        self.bridge.playback_finished.connect(self.on_playback_finished)
        self.bridge.shortcut.connect(self._handle_shortcut)
        self._register_shortcuts()
        self.adjustSize()

    def _setup_ui(self):
        tabs = QTabWidget()
        player_tab = QWidget()
        tabs.addTab(player_tab, "Player")
        tabs.addTab(self._create_log_tab(), "Log")
        self.setCentralWidget(tabs)

        player_layout = QVBoxLayout(player_tab)
        player_layout.addWidget(self._create_file_group())
        player_layout.addWidget(self._create_range_group())
        player_layout.addWidget(self._create_tracks_group())

        transport = QHBoxLayout()
        self.play_button, self.stop_button = QPushButton("Play"), QPushButton("Stop")
        self.reset_button = QPushButton("Reset to Defaults")
        for button in (self.play_button, self.stop_button):
            transport.addWidget(button)
        transport.addStretch()
        transport.addWidget(self.reset_button)
        player_layout.addLayout(transport)

        self.play_button.clicked.connect(self.handle_play)
        self.stop_button.clicked.connect(self.handle_stop)
        self.reset_button.clicked.connect(self._reset_controls_to_default)
        self.stop_button.setEnabled(False)
        self._apply_settings(self.settings)

    def _create_log_tab(self):
        # Failed deliveries log once per event; keep the view bounded.
        tab = QWidget()
        layout = QVBoxLayout(tab)
        self.log_output = QPlainTextEdit()
        self.log_output.setReadOnly(True)
        self.log_output.setMaximumBlockCount(LOG_LINE_LIMIT)
        self.log_output.setFont(QFontDatabase.systemFont(QFontDatabase.SystemFont.FixedFont))
        layout.addWidget(self.log_output)
        row = QHBoxLayout()
        row.addStretch()
        for text, slot in (("Copy", self.copy_log_to_clipboard), ("Clear", self.log_output.clear)):
            button = QPushButton(text)
            button.clicked.connect(slot)
            row.addWidget(button)
        layout.addLayout(row)
        return tab

    def _create_file_group(self):
        # Prev/next walk the MIDI files of the current folder, same as the song shortcuts.
        group = QGroupBox("MIDI File")
        row = QHBoxLayout(group)
        self.prev_song_button, self.next_song_button = QPushButton("<"), QPushButton(">")
        self.prev_song_button.setToolTip("Previous file in this folder")
        self.next_song_button.setToolTip("Next file in this folder")
        self.prev_song_button.clicked.connect(lambda: self._step_song(-1))
        self.next_song_button.clicked.connect(lambda: self._step_song(1))
        self.file_path_label = QLabel("No file selected.")
        self.open_button = QPushButton("Open...")
        self.open_button.clicked.connect(self.select_file)
        row.addWidget(self.prev_song_button)
        row.addWidget(self.file_path_label, 1)
        row.addWidget(self.next_song_button)
        row.addWidget(self.open_button)
        return group

    def _create_range_group(self):
        group = QGroupBox("Key Range && Playback")
        grid = QGridLayout(group)

        def note_spinbox():
            spinbox = QSpinBox()
            spinbox.setRange(0, 127)
            spinbox.valueChanged.connect(lambda v: spinbox.setSuffix(f"  ({note_name(v)})"))
            return spinbox

        self.min_note_spinbox, self.max_note_spinbox = note_spinbox(), note_spinbox()
        grid.addWidget(QLabel("Lowest key:"), 0, 0); grid.addWidget(self.min_note_spinbox, 0, 1)
        grid.addWidget(QLabel("Highest key:"), 0, 2); grid.addWidget(self.max_note_spinbox, 0, 3)

        self.black_key_combo = QComboBox()
        self.black_key_combo.addItems(list(BLACK_KEY_MODES))
        self.black_key_combo.setToolTip("auto_sharp moves every black key to the nearest white key below it.")
        grid.addWidget(QLabel("Black keys:"), 1, 0); grid.addWidget(self.black_key_combo, 1, 1)

        self.speed_spinbox = QDoubleSpinBox()
        self.speed_spinbox.setRange(10.0, 200.0); self.speed_spinbox.setDecimals(1); self.speed_spinbox.setSuffix("%")
        grid.addWidget(QLabel("Tempo:"), 1, 2); grid.addWidget(self.speed_spinbox, 1, 3)

        self.transpose_spinbox, self.octave_spinbox = QSpinBox(), QSpinBox()
        self.transpose_spinbox.setRange(-24, 24); self.octave_spinbox.setRange(-4, 4)
        grid.addWidget(QLabel("Transpose:"), 2, 0); grid.addWidget(self.transpose_spinbox, 2, 1)
        grid.addWidget(QLabel("Octave:"), 2, 2); grid.addWidget(self.octave_spinbox, 2, 3)

        self.countdown_check = QCheckBox(f"Enable {COUNTDOWN_SECONDS:g}-second countdown")
        grid.addWidget(self.countdown_check, 3, 0, 1, 4)
        return group

    def _create_tracks_group(self):
        group = QGroupBox("Tracks")
        layout = QVBoxLayout(group)
        self.summary_label = QLabel("Load a file to see its range.")
        self.track_table = QTableWidget(0, 5)
        self.track_table.setHorizontalHeaderLabels(["Track", "Notes", "Range", "Out of range", "Suggested (transpose, octave)"])
        self.track_table.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeMode.Stretch)
        self.track_table.setEditTriggers(QTableWidget.EditTrigger.NoEditTriggers)
        self.track_table.cellDoubleClicked.connect(self._apply_suggestion)
        layout.addWidget(self.summary_label)
        layout.addWidget(self.track_table)
        return group

    def _apply_settings(self, settings: Settings):
        self.min_note_spinbox.setValue(settings.min_note)
        self.max_note_spinbox.setValue(settings.max_note)
        self.black_key_combo.setCurrentText(settings.black_key_mode)
        self.speed_spinbox.setValue(settings.speed)
        self.countdown_check.setChecked(settings.countdown)
        self.transpose_spinbox.setValue(0); self.octave_spinbox.setValue(0)

    def _reset_controls_to_default(self):
        self._apply_settings(Settings())
        self.add_log_message("All settings have been reset to their default values.")

    def _persist_settings(self):
        try:
            self.settings = self.settings_manager.save(
                min_note=self.min_note_spinbox.value(), max_note=self.max_note_spinbox.value(),
                black_key_mode=self.black_key_combo.currentText(), speed=self.speed_spinbox.value(),
                countdown=self.countdown_check.isChecked(),
                midi_folder_path=os.path.dirname(self.midi_path) if self.midi_path else self.settings.midi_folder_path)
        except OSError as e:
            self.add_log_message(f"Could not save settings: {e}")

    # --- Shortcuts -------------------------------------------------------

    def _register_shortcuts(self):
        handlers = {action: (lambda a=action: self.bridge.shortcut.emit(a))
                    for action in ("START_PAUSE", "STOP", "PREV_SONG", "NEXT_SONG")}
        try:
            self.shortcuts.register(self.settings.shortcuts, handlers)
        except (ValueError, ImportError) as e:
            self.add_log_message(f"Global shortcuts disabled: {e}")

    def _handle_shortcut(self, action: str):
        if action == "START_PAUSE":
            if self.manager.is_active(Category.KEYBOARD): self.handle_stop()
            else: self.handle_play()
        elif action == "STOP":
            self.handle_stop()
        elif action in ("PREV_SONG", "NEXT_SONG"):
            self._step_song(-1 if action == "PREV_SONG" else 1)

    def _folder_songs(self) -> List[str]:
        folder = os.path.dirname(self.midi_path) if self.midi_path else self.settings.midi_folder_path
        if not folder or not os.path.isdir(folder): return []
        return sorted(os.path.join(folder, f) for f in os.listdir(folder) if f.lower().endswith(MIDI_EXTENSIONS))

    def _step_song(self, step: int):
        if self.manager.is_active(Category.KEYBOARD): return
        songs = self._folder_songs()
        if not songs: return
        index = songs.index(self.midi_path) if self.midi_path in songs else -step
        self.load_file(songs[(index + step) % len(songs)])

    # --- Analysis --------------------------------------------------------

    def select_file(self):
        if self.manager.is_active(Category.KEYBOARD): return
        filepath, _ = QFileDialog.getOpenFileName(self, "Select MIDI File", self.settings.midi_folder_path or "",
                                                  "MIDI Files (*.mid *.midi)")
        if filepath:
            self.load_file(filepath)

    def load_file(self, filepath: str):
        self.midi_path = filepath
        self.file_path_label.setText(os.path.basename(filepath))
        self.file_path_label.setToolTip(filepath)
        self.add_log_message(f"Selected file: {filepath}")
        self.run_analysis()

    def run_analysis(self) -> bool:
        if not self.midi_path:
            return False
        debug_log: List[str] = []
        try:
            self.analysis = analyze_midi_file(
                self.midi_path, self.min_note_spinbox.value(), self.max_note_spinbox.value(),
                self.black_key_combo.currentText(), self.transpose_spinbox.value(), self.octave_spinbox.value(),
                debug_log=debug_log)
        except (MidiInputError, ValueError) as e:
            self.analysis = None
            QMessageBox.warning(self, "Cannot Read File", str(e))
            self.add_log_message(f"Error: {e}")
            return False
        finally:
            if debug_log: self.add_log_message("\n".join(debug_log))
        self._persist_settings()
        self._show_analysis(self.analysis)
        return True

    def _show_analysis(self, analysis: AnalysisResult):
        summary = analysis.summary
        self.summary_label.setText(
            f"{len(analysis.note_ons)} notes, {analysis.duration:.1f}s, range "
            f"{summary.min_note_name or '-'} - {summary.max_note_name or '-'}, "
            f"{summary.total_over_limit_count} out of range")
        self.track_table.setRowCount(len(analysis.tracks))
        for row, info in enumerate(analysis.tracks):
            a = info.analysis
            suggestion = a.suggested_max or a.suggested_min
            cells = [f"{info.id}: {info.name}", str(info.note_count), f"{a.min_note_name} - {a.max_note_name}",
                     f"{a.lower_over_limit} low / {a.upper_over_limit} high",
                     f"{suggestion[0]:+d}, {suggestion[1]:+d}" if suggestion else "-"]
            for column, text in enumerate(cells):
                item = QTableWidgetItem(text)
                if column == 3 and (a.is_min_over_limit or a.is_max_over_limit):
                    item.setForeground(Qt.GlobalColor.red)
                self.track_table.setItem(row, column, item)

    def _apply_suggestion(self, row: int, column: int):
        if self.manager.is_active(Category.KEYBOARD): return
        if not self.analysis or row >= len(self.analysis.tracks): return
        a = self.analysis.tracks[row].analysis
        suggestion = a.suggested_max or a.suggested_min
        if suggestion:
            self.transpose_spinbox.setValue(suggestion[0])
            self.octave_spinbox.setValue(suggestion[1])
            self.add_log_message(f"Applied transpose {suggestion[0]:+d}, octave {suggestion[1]:+d}")
            # Suggestions are relative to the current shift; refresh them.
            self.run_analysis()

    # --- Playback --------------------------------------------------------

    def _set_playing(self, playing: bool):
        # Inputs that would change the event list stay locked while a session runs.
        self.play_button.setEnabled(not playing)
        self.stop_button.setEnabled(playing)
        for widget in (self.reset_button, self.open_button, self.prev_song_button, self.next_song_button,
                       self.min_note_spinbox, self.max_note_spinbox, self.black_key_combo, self.speed_spinbox,
                       self.transpose_spinbox, self.octave_spinbox, self.countdown_check):
            widget.setEnabled(not playing)

    def handle_play(self):
        if not self.midi_path:
            QMessageBox.warning(self, "No File", "Please select a MIDI file before playing."); return
        if not self.run_analysis(): return
        debug_log: List[str] = []
        mapper = KeyMapper(self.settings.note_to_key or None)
        events = build_key_events(self.analysis.events, mapper, self.transpose_spinbox.value(),
                                  self.octave_spinbox.value(), self.speed_spinbox.value() / 100.0,
                                  debug_log=debug_log)
        self.add_log_message("\n".join(debug_log))
        if not events:
            self.add_log_message("Error: No playable notes found in the file."); return
        lead_in = COUNTDOWN_SECONDS if self.countdown_check.isChecked() else 0.0
        try:
            self.manager.start(Category.KEYBOARD, events, lead_in=lead_in)
        except PlaybackInProgressError as e:
            self.add_log_message(f"Error: {e}"); return
        self._set_playing(True)
        self.add_log_message("=" * 50 + f"\nPlayback starting{' in %gs' % lead_in if lead_in else ''}...")

    def handle_stop(self):
        self.manager.stop(Category.KEYBOARD)

    def on_playback_finished(self, completed: bool):
        self.add_log_message(f"Playback {'finished' if completed else 'stopped'}.\n" + "=" * 50 + "\n")
        self._set_playing(False)

    def add_log_message(self, message: str): self.log_output.appendPlainText(message)

    def copy_log_to_clipboard(self):
        QGuiApplication.clipboard().setText(self.log_output.toPlainText())
        self.add_log_message(f"Copied {self.log_output.blockCount()} log line(s) to the clipboard.")

    def closeEvent(self, event):
        if self.manager.is_active(Category.KEYBOARD) or self.manager.is_active(Category.MOUSE):
            self.add_log_message("Window closed during playback. Forcing stop...")
        self.manager.stop_all(timeout=1.0)
        self.shortcuts.unregister_all()
        event.accept()


def main():
    app = QApplication(sys.argv)
    window = MainWindow()
    window.show()
    sys.exit(app.exec())


if __name__ == "__main__":
    main()
