"""
ToneScope - Analysis Engine
Fixed-rate driver that pulls frames from a FrameSource and runs the note/key
and beat/tempo pipelines. The two pipelines share no state.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

from beat_estimator import BeatEstimator, TempoEstimate
from config import Config, validate_buffer_length
from frame_source import FrameSource
from key_estimator import KeyEstimate, KeyEstimator
from logging_utils import log_event
from note_mapper import NoteEvent, frequency_to_note
from pitch_estimator import PitchEstimator


@dataclass
class AnalysisSnapshot:
    """Everything the presentation layer needs for one tick"""
    timestamp_ms: float
    frequency: Optional[float] = None         # Raw pitch estimate (None = no pitch)
    note: Optional[NoteEvent] = None
    key: Optional[KeyEstimate] = None         # None when key detection did not run
    tempo: Optional[TempoEstimate] = None     # None when beat detection is disabled
    recent_notes: list[str] = field(default_factory=list)

    @property
    def is_beat(self) -> bool:
        return self.tempo is not None and self.tempo.is_beat


class AnalysisEngine:
    """
    Tick driver for the estimators.
    Owns one PitchEstimator, KeyEstimator and BeatEstimator per source.
    """

    def __init__(self, config: Config, source: FrameSource,
                 clock: Optional[Callable[[], float]] = None):
        self.config = config
        self.source = source
        self.clock = clock or (lambda: time.perf_counter() * 1000.0)

        buffer_length = source.buffer_length
        self.pitch = PitchEstimator(source, buffer_length, config.pitch)
        self.key = KeyEstimator(config.key)
        self.beat = BeatEstimator(source, buffer_length, config.beat, clock=self.clock)

        engine_cfg = config.engine
        self._note_detection_enabled = engine_cfg.note_detection_enabled
        self._key_detection_enabled = engine_cfg.key_detection_enabled
        self._beat_detection_enabled = engine_cfg.beat_detection_enabled
        self.recent_notes: deque[str] = deque(maxlen=engine_cfg.recent_note_count)

        self.last_key: Optional[KeyEstimate] = None
        self.last_tempo: Optional[TempoEstimate] = None
        self.running = False
        self._reset_session_stats()

    # ------------------------------------------------------------------
    # Feature toggles
    # ------------------------------------------------------------------
    @property
    def note_detection_enabled(self) -> bool:
        return self._note_detection_enabled

    @note_detection_enabled.setter
    def note_detection_enabled(self, enabled: bool) -> None:
        if enabled and not self._note_detection_enabled:
            self.recent_notes.clear()
        self._note_detection_enabled = bool(enabled)
        log_event("INFO", "Engine", "Note detection toggled", enabled=self._note_detection_enabled)

    @property
    def key_detection_enabled(self) -> bool:
        return self._key_detection_enabled

    @key_detection_enabled.setter
    def key_detection_enabled(self, enabled: bool) -> None:
        if enabled and not self._key_detection_enabled:
            self.key.clear()
            self.last_key = None
        self._key_detection_enabled = bool(enabled)
        log_event("INFO", "Engine", "Key detection toggled", enabled=self._key_detection_enabled)

    @property
    def beat_detection_enabled(self) -> bool:
        return self._beat_detection_enabled

    @beat_detection_enabled.setter
    def beat_detection_enabled(self, enabled: bool) -> None:
        if enabled and not self._beat_detection_enabled:
            self.beat.reset()
            self.last_tempo = None
        self._beat_detection_enabled = bool(enabled)
        log_event("INFO", "Engine", "Beat detection toggled", enabled=self._beat_detection_enabled)

    # ------------------------------------------------------------------
    # Reconfigure / reset
    # ------------------------------------------------------------------
    def set_buffer_length(self, buffer_length: int) -> None:
        """Change the analysis window everywhere. Histories are never touched."""
        buffer_length = validate_buffer_length(buffer_length)
        self.source.reconfigure(buffer_length)
        self.pitch.set_window_size(buffer_length)
        self.beat.set_window_size(buffer_length)
        self.config.audio.buffer_length = buffer_length
        log_event("INFO", "Engine", "Buffer length set", buffer_length=buffer_length)

    def reset(self) -> None:
        """Start key and tempo tracking from scratch."""
        self.key.clear()
        self.beat.reset()
        self.recent_notes.clear()
        self.last_key = None
        self.last_tempo = None
        log_event("INFO", "Engine", "Detection reset")

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    def tick(self, now_ms: Optional[float] = None) -> AnalysisSnapshot:
        now = self.clock() if now_ms is None else float(now_ms)
        snapshot = AnalysisSnapshot(timestamp_ms=now)

        if self._note_detection_enabled:
            self._run_note_pipeline(snapshot)

        if self._beat_detection_enabled:
            tempo = self.beat.detect_beat(now_ms=now)
            self.last_tempo = tempo
            snapshot.tempo = tempo

        snapshot.recent_notes = list(self.recent_notes)
        self._update_session_stats(snapshot)
        return snapshot

    def _run_note_pipeline(self, snapshot: AnalysisSnapshot) -> None:
        frequency = self.pitch.estimate()
        snapshot.frequency = frequency
        note = frequency_to_note(frequency)
        if note is None:
            return

        snapshot.note = note
        self.recent_notes.append(note.note)

        if self._key_detection_enabled:
            self.key.add_note(note.note_name)
            key = self.key.estimate_key()
            self.last_key = key
            snapshot.key = key

    # ------------------------------------------------------------------
    # Driver loop
    # ------------------------------------------------------------------
    def run(self, duration_s: Optional[float] = None,
            callback: Optional[Callable[[AnalysisSnapshot], None]] = None) -> None:
        """Tick at the configured rate until stop() or duration_s elapses."""
        interval_s = 1.0 / max(1.0, self.config.engine.tick_rate_hz)
        started = time.perf_counter()
        next_tick = started
        self.running = True
        self._reset_session_stats()
        log_event("INFO", "Engine", "Started", tick_rate_hz=self.config.engine.tick_rate_hz,
                  buffer_length=self.source.buffer_length)
        try:
            while self.running:
                if duration_s is not None and time.perf_counter() - started >= duration_s:
                    break
                snapshot = self.tick()
                if callback is not None:
                    callback(snapshot)
                next_tick += interval_s
                delay = next_tick - time.perf_counter()
                if delay > 0:
                    time.sleep(delay)
                else:
                    # Fell behind; don't try to catch up with a burst of ticks
                    next_tick = time.perf_counter()
        finally:
            self.stop()

    def stop(self) -> None:
        if not self.running:
            return
        self.running = False
        self._log_session_summary()
        log_event("INFO", "Engine", "Stopped")

    # ------------------------------------------------------------------
    # Session stats
    # ------------------------------------------------------------------
    def _reset_session_stats(self) -> None:
        self._session_ticks = 0
        self._session_pitched_ticks = 0
        self._session_beats = 0
        self._session_energy_max: Optional[float] = None

    def _update_session_stats(self, snapshot: AnalysisSnapshot) -> None:
        self._session_ticks += 1
        if snapshot.note is not None:
            self._session_pitched_ticks += 1
        if snapshot.tempo is not None:
            if snapshot.tempo.is_beat:
                self._session_beats += 1
            energy = snapshot.tempo.energy
            if self._session_energy_max is None or energy > self._session_energy_max:
                self._session_energy_max = energy

        every = self.config.engine.levels_log_every
        if every > 0 and self._session_ticks % every == 0:
            log_event(
                "DEBUG",
                "Engine",
                "Levels",
                ticks=self._session_ticks,
                note=snapshot.note.note if snapshot.note else "-",
                energy=f"{snapshot.tempo.energy:.1f}" if snapshot.tempo else "-",
                bpm=f"{snapshot.tempo.bpm:.1f}" if snapshot.tempo else "-",
            )

    def _log_session_summary(self) -> None:
        if self._session_ticks <= 0:
            return

        key = self.last_key
        tempo = self.last_tempo
        log_event(
            "INFO",
            "Engine",
            "Session summary",
            ticks=self._session_ticks,
            pitched_ticks=self._session_pitched_ticks,
            beats=self._session_beats,
            energy_max=f"{(self._session_energy_max or 0.0):.1f}",
            key=key.consensus_key if key else "-",
            key_confidence=key.consensus_confidence if key else 0,
            bpm=f"{tempo.consensus_bpm:.0f}" if tempo else "-",
            bpm_confidence=tempo.consensus_confidence if tempo else 0,
        )
