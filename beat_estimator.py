"""
ToneScope - Beat estimator
Bass-energy onset detection against a rolling mean, with tempo estimated
from the spacing of recent beats.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from config import BeatConfig, DEFAULT_BUFFER_LENGTH, validate_buffer_length
from frame_source import FrameSource
from logging_utils import log_event


@dataclass(frozen=True)
class BpmBucket:
    bpm: int
    percentage: int


@dataclass(frozen=True)
class TempoEstimate:
    """Beat/tempo state for one tick"""
    is_beat: bool                  # A beat triggered on this tick
    bpm: float                     # Instantaneous BPM (0 = unknown)
    confidence: int                # 0-100, from interval regularity
    consensus_bpm: float           # Most common recent BPM bucket
    consensus_confidence: int      # Share of that bucket (0-100)
    histogram: list[BpmBucket] = field(default_factory=list)
    energy: float = 0.0            # Raw bass energy this tick


def _perf_counter_ms() -> float:
    return time.perf_counter() * 1000.0


class BeatEstimator:
    def __init__(
        self,
        source: Optional[FrameSource] = None,
        window_size: int = DEFAULT_BUFFER_LENGTH,
        config: Optional[BeatConfig] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.source = source
        self.config = config or BeatConfig()
        self.clock = clock or _perf_counter_ms
        self._freq_buffer = np.zeros(validate_buffer_length(window_size) // 2, dtype=np.uint8)

        cfg = self.config
        self.energy_history: deque[float] = deque(maxlen=cfg.energy_history_size)
        self.beat_times: deque[float] = deque(maxlen=cfg.beat_timestamp_size)
        self.bpm_history: deque[int] = deque(maxlen=cfg.bpm_history_size)
        self.last_beat_time: Optional[float] = None
        self.bpm: float = 0.0

    @property
    def window_size(self) -> int:
        return len(self._freq_buffer) * 2

    def set_window_size(self, window_size: int) -> None:
        """Reallocate the frequency buffer only; beat and tempo history survive."""
        window_size = validate_buffer_length(window_size)
        self._freq_buffer = np.zeros(window_size // 2, dtype=np.uint8)
        log_event("DEBUG", "Beat", "Window resized", size=window_size)

    def reset(self) -> None:
        self.energy_history.clear()
        self.beat_times.clear()
        self.bpm_history.clear()
        self.last_beat_time = None
        self.bpm = 0.0
        log_event("DEBUG", "Beat", "Tempo tracking reset")

    def compute_energy(self, freq_buffer=None) -> float:
        """Mean squared magnitude over the lowest bins (bass band)."""
        spectrum = self._freq_buffer if freq_buffer is None else freq_buffer
        spectrum = np.asarray(spectrum, dtype=np.float64)
        if len(spectrum) == 0:
            return 0.0
        bass_bins = max(1, int(len(spectrum) * self.config.bass_fraction))
        band = spectrum[:bass_bins]
        return float(np.sum(band * band) / bass_bins)

    def detect_beat(self, freq_buffer=None, now_ms: Optional[float] = None) -> TempoEstimate:
        """Process one tick of frequency data and return the tempo state."""
        cfg = self.config
        if freq_buffer is None:
            if self.source is None:
                raise RuntimeError("BeatEstimator has no frame source attached")
            self._fill_from_source()
            freq_buffer = self._freq_buffer
        now = self.clock() if now_ms is None else float(now_ms)

        energy = self.compute_energy(freq_buffer)
        self.energy_history.append(energy)

        if len(self.energy_history) < cfg.energy_history_size:
            return TempoEstimate(
                is_beat=False,
                bpm=0.0,
                confidence=0,
                consensus_bpm=0.0,
                consensus_confidence=0,
                energy=energy,
            )

        average = float(np.mean(self.energy_history))
        since_last = None if self.last_beat_time is None else now - self.last_beat_time
        is_beat = (
            energy > average * cfg.threshold_multiplier
            and (since_last is None or since_last >= cfg.min_beat_interval_ms)
        )

        if is_beat:
            self.last_beat_time = now
            self.beat_times.append(now)
            self._update_bpm()
            log_event("DEBUG", "Beat", "Beat", energy=f"{energy:.1f}",
                      mean=f"{average:.1f}", bpm=f"{self.bpm:.1f}")

        histogram = self._bpm_histogram()
        if histogram:
            consensus_bpm = float(histogram[0].bpm)
            consensus_confidence = histogram[0].percentage
        else:
            consensus_bpm = self.bpm
            consensus_confidence = 0

        return TempoEstimate(
            is_beat=is_beat,
            bpm=self.bpm,
            confidence=self._interval_confidence(),
            consensus_bpm=consensus_bpm,
            consensus_confidence=consensus_confidence,
            histogram=histogram,
            energy=energy,
        )

    def _fill_from_source(self) -> None:
        snapshot = self.source.frequency_domain_snapshot()
        count = min(len(self._freq_buffer), len(snapshot))
        self._freq_buffer[:count] = snapshot[:count]
        self._freq_buffer[count:] = 0

    def _intervals(self) -> np.ndarray:
        return np.diff(np.asarray(self.beat_times, dtype=np.float64))

    def _update_bpm(self) -> None:
        cfg = self.config
        if len(self.beat_times) < 2:
            self.bpm = 0.0
            return
        mean_interval = float(np.mean(self._intervals()))
        if mean_interval <= 0:
            return
        self.bpm = float(np.clip(60000.0 / mean_interval, cfg.bpm_min, cfg.bpm_max))
        self.bpm_history.append(int(round(self.bpm)))

    def _interval_confidence(self) -> int:
        """100 minus the coefficient of variation (%) of recent beat intervals."""
        if len(self.beat_times) < 3:
            return 0
        intervals = self._intervals()
        mean_interval = float(np.mean(intervals))
        if mean_interval <= 0:
            return 0
        cv = float(np.std(intervals)) / mean_interval * 100.0
        return int(round(max(0.0, min(100.0, 100.0 - cv))))

    def _bpm_histogram(self) -> list[BpmBucket]:
        if not self.bpm_history:
            return []
        width = self.config.bpm_bucket_width
        counts: dict[int, int] = {}
        for bpm in self.bpm_history:
            bucket = int(round(bpm / width)) * width
            counts[bucket] = counts.get(bucket, 0) + 1

        total = len(self.bpm_history)
        ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
        return [
            BpmBucket(bpm=bucket, percentage=int(round(100.0 * count / total)))
            for bucket, count in ranked
        ]
