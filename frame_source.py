"""
ToneScope - Frame sources
Supplies time-domain and byte-frequency snapshots to the estimators.
AnalyserFrameSource mirrors a Web Audio AnalyserNode: a ring of the most
recent samples, a Blackman-windowed FFT with time smoothing, and a dB range
mapped onto 0-255 bytes.
"""

import threading
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np

from config import AudioConfig, DEFAULT_BUFFER_LENGTH, validate_buffer_length
from logging_utils import log_event


@dataclass(frozen=True)
class AudioFrame:
    """One analyser snapshot. Read-only to the estimators."""
    time_domain: np.ndarray       # float32 samples in [-1, 1], buffer_length long
    frequency_domain: np.ndarray  # uint8 magnitudes, buffer_length // 2 long
    sample_rate: float
    buffer_length: int


@runtime_checkable
class FrameSource(Protocol):
    @property
    def sample_rate(self) -> float: ...

    @property
    def buffer_length(self) -> int: ...

    def time_domain_snapshot(self) -> np.ndarray: ...

    def frequency_domain_snapshot(self) -> np.ndarray: ...

    def reconfigure(self, buffer_length: int) -> None: ...


class AnalyserFrameSource:
    """In-process analyser fed by ``push()``.

    Thread-safe for a single producer (capture callback) and a single
    consumer (tick driver).
    """

    def __init__(
        self,
        sample_rate: float = 44100.0,
        buffer_length: int = DEFAULT_BUFFER_LENGTH,
        smoothing_time_constant: float = 0.8,
        min_decibels: float = -100.0,
        max_decibels: float = -30.0,
    ):
        if max_decibels <= min_decibels:
            raise ValueError("max_decibels must be greater than min_decibels")
        self._sample_rate = float(sample_rate)
        self._buffer_length = validate_buffer_length(buffer_length)
        self.smoothing_time_constant = float(np.clip(smoothing_time_constant, 0.0, 1.0))
        self.min_decibels = float(min_decibels)
        self.max_decibels = float(max_decibels)

        self._lock = threading.Lock()
        self._ring = np.zeros(self._buffer_length, dtype=np.float32)
        self._window = np.blackman(self._buffer_length).astype(np.float32)
        self._smoothed: np.ndarray = np.zeros(self._buffer_length // 2, dtype=np.float64)

    @classmethod
    def from_config(cls, audio: AudioConfig) -> "AnalyserFrameSource":
        return cls(
            sample_rate=audio.sample_rate,
            buffer_length=audio.buffer_length,
            smoothing_time_constant=audio.smoothing_time_constant,
            min_decibels=audio.min_decibels,
            max_decibels=audio.max_decibels,
        )

    @property
    def sample_rate(self) -> float:
        return self._sample_rate

    @property
    def buffer_length(self) -> int:
        return self._buffer_length

    def push(self, samples) -> None:
        """Append a block of samples (mono, or frames x channels) to the ring."""
        block = np.asarray(samples, dtype=np.float32)
        if block.ndim > 1:
            block = block.mean(axis=1)
        count = len(block)
        if count == 0:
            return

        with self._lock:
            size = len(self._ring)
            if count >= size:
                self._ring[:] = block[-size:]
            else:
                self._ring[:-count] = self._ring[count:]
                self._ring[-count:] = block

    def time_domain_snapshot(self) -> np.ndarray:
        with self._lock:
            return self._ring.copy()

    def frequency_domain_snapshot(self) -> np.ndarray:
        with self._lock:
            samples = self._ring.copy()
            window = self._window

        n = len(samples)
        magnitude = np.abs(np.fft.rfft(samples * window))[: n // 2] / n

        tau = self.smoothing_time_constant
        if len(self._smoothed) != len(magnitude):
            self._smoothed = np.zeros(len(magnitude), dtype=np.float64)
        self._smoothed = tau * self._smoothed + (1.0 - tau) * magnitude

        with np.errstate(divide='ignore'):
            decibels = 20.0 * np.log10(self._smoothed)
        scale = 255.0 / (self.max_decibels - self.min_decibels)
        scaled = (decibels - self.min_decibels) * scale
        scaled = np.nan_to_num(scaled, nan=0.0, neginf=0.0, posinf=255.0)
        return np.clip(scaled, 0, 255).astype(np.uint8)

    def snapshot(self) -> AudioFrame:
        time_domain = self.time_domain_snapshot()
        return AudioFrame(
            time_domain=time_domain,
            frequency_domain=self.frequency_domain_snapshot(),
            sample_rate=self._sample_rate,
            buffer_length=len(time_domain),
        )

    def reconfigure(self, buffer_length: int) -> None:
        """Recreate the sampling buffers at a new length, keeping the newest samples."""
        buffer_length = validate_buffer_length(buffer_length)
        with self._lock:
            old_length = self._buffer_length
            ring = np.zeros(buffer_length, dtype=np.float32)
            keep = min(old_length, buffer_length)
            ring[-keep:] = self._ring[-keep:]
            self._ring = ring
            self._window = np.blackman(buffer_length).astype(np.float32)
            self._smoothed = np.zeros(buffer_length // 2, dtype=np.float64)
            self._buffer_length = buffer_length
        log_event("INFO", "Analyser", "Buffer length changed",
                  old=old_length, new=buffer_length)
