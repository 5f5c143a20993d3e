import json
import tempfile
import unittest
from dataclasses import asdict
from pathlib import Path
from unittest import mock

from config import (
    CURRENT_CONFIG_VERSION,
    DEFAULT_BUFFER_LENGTH,
    Config,
    apply_dict_to_dataclass,
    migrate_config,
)
import config_persistence


class TestConfigMigration(unittest.TestCase):
    def test_missing_version_sets_defaults_and_bumps(self):
        cfg = Config()
        data = {
            # version intentionally omitted to simulate legacy file
            "audio": {},
            "beat": {},
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.version, CURRENT_CONFIG_VERSION)
        self.assertEqual(cfg.audio.buffer_length, DEFAULT_BUFFER_LENGTH)
        self.assertEqual(cfg.beat.energy_history_size, 43)

    def test_none_values_are_sanitized(self):
        cfg = Config()
        data = {
            "version": 0,
            "audio": {"smoothing_time_constant": None, "sample_rate": None},
            "beat": {"threshold_multiplier": None},
            "key": {"min_notes": None},
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.version, CURRENT_CONFIG_VERSION)
        self.assertEqual(cfg.audio.smoothing_time_constant, 0.8)
        self.assertEqual(cfg.audio.sample_rate, 44100)
        self.assertEqual(cfg.beat.threshold_multiplier, 1.3)
        self.assertEqual(cfg.key.min_notes, 10)
        # Device index defaults to None and must stay None
        self.assertIsNone(cfg.audio.device_index)

    def test_invalid_buffer_length_falls_back_to_default(self):
        cfg = Config()
        apply_dict_to_dataclass(cfg, {"version": 1, "audio": {"buffer_length": 3000}})

        with mock.patch("config.log_event") as log_event_mock:
            migrate_config(cfg, 1)

        self.assertEqual(cfg.audio.buffer_length, DEFAULT_BUFFER_LENGTH)
        log_event_mock.assert_called_once()

    def test_out_of_range_values_are_clamped(self):
        cfg = Config()
        apply_dict_to_dataclass(cfg, {
            "audio": {"smoothing_time_constant": 3.0},
            "engine": {"tick_rate_hz": 0},
        })
        migrate_config(cfg, 1)
        self.assertEqual(cfg.audio.smoothing_time_constant, 1.0)
        self.assertEqual(cfg.engine.tick_rate_hz, 1.0)

    def test_preserves_custom_values(self):
        cfg = Config()
        data = {
            "version": 1,
            "audio": {"buffer_length": 4096, "device_index": 3},
            "engine": {"beat_detection_enabled": False, "tick_rate_hz": 30.0},
            "log_level": "DEBUG",
            "unknown_section": {"ignored": True},
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.audio.buffer_length, 4096)
        self.assertEqual(cfg.audio.device_index, 3)
        self.assertFalse(cfg.engine.beat_detection_enabled)
        self.assertEqual(cfg.engine.tick_rate_hz, 30.0)
        self.assertEqual(cfg.log_level, "DEBUG")
        self.assertFalse(hasattr(cfg, "unknown_section"))

    def test_load_config_auto_saves_bumped_version(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_file = Path(tmpdir) / "config.json"
            legacy = asdict(Config())
            legacy["version"] = 0
            legacy["beat"]["threshold_multiplier"] = None  # force migration path
            with open(cfg_file, "w", encoding="utf-8") as f:
                json.dump(legacy, f)

            with mock.patch.object(config_persistence, "get_config_file", return_value=cfg_file):
                cfg = config_persistence.load_config()

            self.assertEqual(cfg.version, CURRENT_CONFIG_VERSION)
            self.assertEqual(cfg.beat.threshold_multiplier, 1.3)
            with open(cfg_file, "r", encoding="utf-8") as f:
                persisted = json.load(f)
            self.assertEqual(persisted.get("version"), CURRENT_CONFIG_VERSION)


if __name__ == "__main__":
    unittest.main()
