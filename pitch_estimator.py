"""
ToneScope - Pitch estimator
Time-domain fundamental frequency estimation using an average magnitude
difference score over candidate lags.
"""

from typing import Optional

import numpy as np

from config import DEFAULT_BUFFER_LENGTH, PitchConfig, validate_buffer_length
from frame_source import FrameSource
from logging_utils import log_event


class PitchEstimator:
    """
    Monophonic pitch detector.

    For each lag the score is ``1 - mean(|x[i] - x[i + lag]|)`` over the first
    half of the window. Lags are accepted while the score is above the
    correlation threshold and still rising; the first time the rise ends the
    best lag is refined with a parabola through its neighbouring scores and
    returned. This picks the first local maximum, not the global best, so an
    early peak wins over a slightly better one further out.

    The return happens where the rise ends, not at the first accepted lag: on
    a 440 Hz sine at 44.1 kHz the first accepted lag is 98 (about 450 Hz)
    while the peak sits at 100.
    """

    def __init__(
        self,
        source: Optional[FrameSource] = None,
        window_size: int = DEFAULT_BUFFER_LENGTH,
        config: Optional[PitchConfig] = None,
    ):
        self.source = source
        self.config = config or PitchConfig()
        self._buffer = np.zeros(validate_buffer_length(window_size), dtype=np.float32)

    @property
    def window_size(self) -> int:
        return len(self._buffer)

    def set_window_size(self, window_size: int) -> None:
        """Reallocate the sample buffer. No other state is touched."""
        window_size = validate_buffer_length(window_size)
        self._buffer = np.zeros(window_size, dtype=np.float32)
        log_event("DEBUG", "Pitch", "Window resized", size=window_size)

    def estimate(self, time_buffer=None, sample_rate: Optional[float] = None) -> Optional[float]:
        """Return the fundamental frequency in Hz, or None when there is no pitch.

        Without arguments the estimator samples its attached frame source into
        its own window-sized buffer.
        """
        if time_buffer is None:
            if self.source is None:
                raise RuntimeError("PitchEstimator has no frame source attached")
            self._fill_from_source()
            time_buffer = self._buffer
            sample_rate = self.source.sample_rate
        elif sample_rate is None:
            raise ValueError("sample_rate is required when passing a buffer")

        samples = np.asarray(time_buffer, dtype=np.float64)
        return self._auto_correlate(samples, float(sample_rate))

    def _fill_from_source(self) -> None:
        snapshot = self.source.time_domain_snapshot()
        count = min(len(self._buffer), len(snapshot))
        self._buffer[:count] = snapshot[:count]
        self._buffer[count:] = 0.0

    def _auto_correlate(self, buffer: np.ndarray, sample_rate: float) -> Optional[float]:
        cfg = self.config
        size = len(buffer)
        max_samples = size // 2
        if max_samples < 3 or sample_rate <= 0:
            return None

        rms = float(np.sqrt(np.mean(buffer ** 2)))
        if rms < cfg.rms_gate:
            return None

        head = buffer[:max_samples]
        scores = np.zeros(max_samples + 1)
        best_offset = -1
        best_score = 0.0
        last_score = 1.0
        found_peak = False

        for offset in range(1, max_samples):
            score = 1.0 - float(np.mean(np.abs(head - buffer[offset:offset + max_samples])))
            scores[offset] = score

            if score > cfg.correlation_threshold and score > last_score:
                if score > best_score:
                    best_score = score
                    best_offset = offset
                    found_peak = True
            elif found_peak:
                # Rise has ended; further lags only revisit multiples of this period
                shift = _parabolic_shift(scores, best_offset)
                return sample_rate / (best_offset + shift)

            last_score = score

        if best_score > cfg.fallback_threshold:
            return sample_rate / best_offset
        return None


def _parabolic_shift(scores: np.ndarray, peak: int) -> float:
    """Vertex offset of the parabola through scores[peak-1 .. peak+1]."""
    left, centre, right = scores[peak - 1], scores[peak], scores[peak + 1]
    denominator = left - 2.0 * centre + right
    if abs(denominator) < 1e-12:
        return 0.0
    return float(0.5 * (left - right) / denominator)
