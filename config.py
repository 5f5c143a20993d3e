# ToneScope Configuration
# All default values and constants

from dataclasses import dataclass, field, is_dataclass
from enum import IntEnum
from typing import Optional

from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1

# Analyser buffer lengths accepted by every sampling buffer
VALID_BUFFER_LENGTHS = (512, 1024, 2048, 4096, 8192)
DEFAULT_BUFFER_LENGTH = 2048


class InvalidBufferLengthError(ValueError):
    """Raised when a buffer length outside VALID_BUFFER_LENGTHS is requested."""

    def __init__(self, buffer_length):
        self.buffer_length = buffer_length
        super().__init__(
            f"Invalid buffer length {buffer_length!r}; expected one of {VALID_BUFFER_LENGTHS}"
        )


def validate_buffer_length(buffer_length) -> int:
    """Return buffer_length as int, or raise InvalidBufferLengthError."""
    if isinstance(buffer_length, bool) or not isinstance(buffer_length, int):
        raise InvalidBufferLengthError(buffer_length)
    if buffer_length not in VALID_BUFFER_LENGTHS:
        raise InvalidBufferLengthError(buffer_length)
    return buffer_length


class KeyMode(IntEnum):
    MAJOR = 1
    MINOR = 2


@dataclass
class AudioConfig:
    """Analyser / capture settings"""
    sample_rate: int = 44100
    buffer_length: int = DEFAULT_BUFFER_LENGTH  # Analyser window (512-8192, power of two)
    channels: int = 1
    # Device index - None means use system default input
    device_index: Optional[int] = None
    block_size: int = 512                  # Samples per capture callback
    smoothing_time_constant: float = 0.8   # Spectrum smoothing between snapshots (0.0-1.0)
    min_decibels: float = -100.0           # Maps to byte 0
    max_decibels: float = -30.0            # Maps to byte 255


@dataclass
class PitchConfig:
    """Autocorrelation pitch estimator parameters"""
    rms_gate: float = 0.01                 # Below this RMS the frame is treated as silence
    correlation_threshold: float = 0.9     # Minimum lag score to accept as a period candidate
    fallback_threshold: float = 0.01       # Best score needed for the unrefined fallback


@dataclass
class KeyConfig:
    """Key estimator parameters"""
    note_history_size: int = 50
    vote_history_size: int = 30
    min_notes: int = 10                    # Notes needed before a key is estimated


@dataclass
class BeatConfig:
    """Energy-threshold beat detection parameters"""
    energy_history_size: int = 43          # ~1 s at a 60 Hz tick
    threshold_multiplier: float = 1.3      # Beat when energy > mean * this
    min_beat_interval_ms: float = 300.0    # Refractory period between beats
    beat_timestamp_size: int = 8
    bpm_history_size: int = 30
    bpm_min: float = 40.0
    bpm_max: float = 240.0
    bass_fraction: float = 0.1             # Lowest fraction of bins used for bass energy
    bpm_bucket_width: int = 2              # Histogram bucket size (BPM)


@dataclass
class EngineConfig:
    """Tick driver settings"""
    tick_rate_hz: float = 60.0
    note_detection_enabled: bool = True
    key_detection_enabled: bool = True
    beat_detection_enabled: bool = True
    recent_note_count: int = 10            # Note labels kept for display
    levels_log_every: int = 120            # Ticks between DEBUG level summaries


@dataclass
class Config:
    """Master configuration"""
    version: int = CURRENT_CONFIG_VERSION  # Schema version for persisted configs
    audio: AudioConfig = field(default_factory=AudioConfig)
    pitch: PitchConfig = field(default_factory=PitchConfig)
    key: KeyConfig = field(default_factory=KeyConfig)
    beat: BeatConfig = field(default_factory=BeatConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    log_level: str = "INFO"                # Logging level (DEBUG/INFO/WARNING/ERROR)


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; IntEnum fields are coerced when possible."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        if isinstance(current, IntEnum):
            try:
                setattr(target, key, current.__class__(value))
            except ValueError:
                log_event("WARN", "Config", "Could not convert value, keeping default",
                          key=key, expected=current.__class__.__name__)
            continue

        setattr(target, key, value)


def _restore_defaults(section, defaults) -> None:
    for name, default in vars(defaults).items():
        if getattr(section, name, None) is None and default is not None:
            setattr(section, name, default)


def _clamp_attr(section, name: str, low: float, high: float, default: float) -> None:
    try:
        value = float(getattr(section, name, default))
    except (TypeError, ValueError):
        value = default
    setattr(section, name, max(low, min(high, value)))


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Restores defaults for missing/None fields and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    if version < 1:
        # Pre-versioned files may carry nulls written by older front-ends
        _restore_defaults(config.audio, AudioConfig())
        _restore_defaults(config.pitch, PitchConfig())
        _restore_defaults(config.key, KeyConfig())
        _restore_defaults(config.beat, BeatConfig())
        _restore_defaults(config.engine, EngineConfig())

    if not config.log_level:
        config.log_level = "INFO"

    try:
        validate_buffer_length(config.audio.buffer_length)
    except InvalidBufferLengthError:
        log_event("WARN", "Config", "Persisted buffer length invalid, using default",
                  buffer_length=config.audio.buffer_length, default=DEFAULT_BUFFER_LENGTH)
        config.audio.buffer_length = DEFAULT_BUFFER_LENGTH

    # Always clamp safety ranges
    _clamp_attr(config.audio, "smoothing_time_constant", 0.0, 1.0, 0.8)
    _clamp_attr(config.beat, "bass_fraction", 0.01, 1.0, 0.1)
    _clamp_attr(config.engine, "tick_rate_hz", 1.0, 240.0, 60.0)

    config.version = CURRENT_CONFIG_VERSION


# Default config instance
DEFAULT_CONFIG = Config()
