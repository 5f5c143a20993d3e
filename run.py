#!/usr/bin/env python3
"""
ToneScope - Real-time note, key and tempo detection

Listens to an input device and logs the current note, the estimated key
and the tempo as they change.
"""

import argparse
import cProfile
import sys
from typing import Optional

from analysis_engine import AnalysisEngine, AnalysisSnapshot
from config import VALID_BUFFER_LENGTHS, Config
from config_persistence import load_config, save_config
from logging_utils import log_event, set_log_level


class ConsoleReporter:
    """Logs snapshot changes instead of every tick."""

    def __init__(self):
        self._last_note: Optional[str] = None
        self._last_key: Optional[str] = None
        self._last_bpm: Optional[int] = None

    def __call__(self, snapshot: AnalysisSnapshot) -> None:
        note = snapshot.note
        if note is not None and note.note != self._last_note:
            self._last_note = note.note
            log_event("INFO", "Note", note.note, frequency=f"{note.frequency:.2f}",
                      cents=f"{note.cents:+d}")

        key = snapshot.key
        if key is not None and key.ready and key.consensus_key != self._last_key:
            self._last_key = key.consensus_key
            log_event("INFO", "Key", key.consensus_key, confidence=key.consensus_confidence,
                      instant=key.key, instant_confidence=key.confidence)

        tempo = snapshot.tempo
        if tempo is not None and tempo.consensus_bpm > 0:
            bpm = int(round(tempo.consensus_bpm))
            if bpm != self._last_bpm:
                self._last_bpm = bpm
                log_event("INFO", "Tempo", f"{bpm} BPM", confidence=tempo.consensus_confidence,
                          instant=f"{tempo.bpm:.1f}", regularity=tempo.confidence)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run ToneScope live analysis")
    parser.add_argument("--buffer-length", type=int, choices=VALID_BUFFER_LENGTHS,
                        help="Analyser window in samples")
    parser.add_argument("--tick-rate", type=float, help="Analysis ticks per second")
    parser.add_argument("--device", type=int, help="Input device index (default: system input)")
    parser.add_argument("--duration", type=float, help="Stop after this many seconds")
    parser.add_argument("--log-level", choices=("DEBUG", "INFO", "WARNING", "ERROR"))
    parser.add_argument("--no-notes", action="store_true", help="Disable note detection")
    parser.add_argument("--no-key", action="store_true", help="Disable key detection")
    parser.add_argument("--no-beat", action="store_true", help="Disable beat detection")
    parser.add_argument("--list-devices", action="store_true", help="List input devices and exit")
    parser.add_argument("--save-config", action="store_true",
                        help="Persist the effective settings to the config file")
    parser.add_argument(
        "--profile",
        action="store_true",
        help="Enable cProfile and save stats to --profile-out",
    )
    parser.add_argument(
        "--profile-out",
        default="profile.prof",
        help="Path to save cProfile stats (default: profile.prof)",
    )
    return parser


def apply_args(config: Config, args: argparse.Namespace) -> Config:
    if args.buffer_length is not None:
        config.audio.buffer_length = args.buffer_length
    if args.tick_rate is not None:
        config.engine.tick_rate_hz = args.tick_rate
    if args.device is not None:
        config.audio.device_index = args.device
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.no_notes:
        config.engine.note_detection_enabled = False
    if args.no_key:
        config.engine.key_detection_enabled = False
    if args.no_beat:
        config.engine.beat_detection_enabled = False
    return config


def run_app(config: Config, duration_s: Optional[float]) -> int:
    # Imported here so --help works without PortAudio installed
    from audio_capture import LiveFrameSource
    import sounddevice as sd

    try:
        with LiveFrameSource(config.audio) as source:
            engine = AnalysisEngine(config, source)
            try:
                engine.run(duration_s=duration_s, callback=ConsoleReporter())
            except KeyboardInterrupt:
                engine.stop()
    except sd.PortAudioError as e:
        log_event("ERROR", "Capture", "Could not open input device", error=e)
        return 1
    return 0


def main() -> None:
    args = build_parser().parse_args()

    if args.list_devices:
        from audio_capture import list_input_devices
        for device in list_input_devices():
            print(f"[{device['index']}] {device['name']} "
                  f"({device['channels']} ch, {device['sample_rate']:.0f} Hz)")
        sys.exit(0)

    config = apply_args(load_config(), args)
    set_log_level(config.log_level)

    if args.save_config:
        save_config(config)

    if args.profile:
        profiler = cProfile.Profile()
        profiler.enable()
        exit_code = run_app(config, args.duration)
        profiler.disable()
        profiler.dump_stats(args.profile_out)
    else:
        exit_code = run_app(config, args.duration)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
