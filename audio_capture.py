"""
ToneScope - Live microphone capture
Feeds a sounddevice InputStream into an AnalyserFrameSource.
"""

from typing import Optional

import numpy as np
import sounddevice as sd

from config import AudioConfig
from frame_source import AnalyserFrameSource
from logging_utils import log_event


class LiveFrameSource(AnalyserFrameSource):
    """AnalyserFrameSource whose ring is filled by a PortAudio input callback."""

    def __init__(self, audio: AudioConfig):
        super().__init__(
            sample_rate=audio.sample_rate,
            buffer_length=audio.buffer_length,
            smoothing_time_constant=audio.smoothing_time_constant,
            min_decibels=audio.min_decibels,
            max_decibels=audio.max_decibels,
        )
        self.audio = audio
        self.stream: Optional[sd.InputStream] = None
        self.overflow_count = 0

    @property
    def running(self) -> bool:
        return self.stream is not None and self.stream.active

    def _callback(self, indata, frames, time_info, status):
        if status:
            self.overflow_count += 1
            log_event("DEBUG", "Capture", "Stream status", status=status)
        self.push(np.asarray(indata, dtype=np.float32))

    def start(self) -> None:
        """Open the input device and begin capturing"""
        if self.stream is not None:
            return

        device_info = sd.query_devices(self.audio.device_index, kind='input')
        # Use the device's native rate so the analyser reports the true sample rate
        self._sample_rate = float(device_info['default_samplerate'])
        channels = max(1, min(int(device_info['max_input_channels']), self.audio.channels))

        log_event("INFO", "Capture", "Using input device",
                  device=device_info['name'], channels=channels,
                  sample_rate=int(self._sample_rate))

        self.stream = sd.InputStream(
            device=self.audio.device_index,
            channels=channels,
            samplerate=self._sample_rate,
            blocksize=self.audio.block_size,
            dtype='float32',
            callback=self._callback,
        )
        try:
            self.stream.start()
        except sd.PortAudioError:
            self.stream.close()
            self.stream = None
            raise
        log_event("INFO", "Capture", "Input capture started")

    def stop(self) -> None:
        """Stop audio capture"""
        if self.stream is None:
            return
        self.stream.stop()
        self.stream.close()
        self.stream = None
        log_event("INFO", "Capture", "Stopped", overflows=self.overflow_count)

    def __enter__(self) -> "LiveFrameSource":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def list_input_devices() -> list[dict]:
    """Return input-capable devices as dicts with index, name, channels, sample rate."""
    devices = []
    for i, d in enumerate(sd.query_devices()):
        if d['max_input_channels'] <= 0:
            continue
        devices.append({
            'index': i,
            'name': d['name'],
            'channels': d['max_input_channels'],
            'sample_rate': d['default_samplerate'],
        })
    return devices
