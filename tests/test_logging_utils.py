import logging
import unittest

import logging_utils
from logging_utils import get_log_level, log_event, set_log_level


class TestLoggingUtils(unittest.TestCase):
    def setUp(self):
        self._previous = get_log_level()

    def tearDown(self):
        set_log_level(self._previous)

    def test_log_event_appends_fields_and_tag(self):
        with self.assertLogs(logging_utils.LOGGER_NAME, level="INFO") as captured:
            log_event("INFO", "Beat", "Tempo changed", bpm=120, confidence=90)

        record = captured.records[0]
        self.assertEqual(record.getMessage(), "Tempo changed | bpm=120 confidence=90")
        self.assertEqual(record.tag, "Beat")

    def test_missing_tag_uses_project_tag(self):
        with self.assertLogs(logging_utils.LOGGER_NAME, level="INFO") as captured:
            log_event("INFO", "", "Started")

        self.assertEqual(captured.records[0].tag, logging_utils.DEFAULT_TAG)
        self.assertEqual(logging_utils.DEFAULT_TAG, "ToneScope")

    def test_warn_alias_and_unknown_level(self):
        with self.assertLogs(logging_utils.LOGGER_NAME, level="INFO") as captured:
            log_event("WARN", "Config", "careful")
            log_event("nonsense", "Config", "fallback")

        self.assertEqual([r.levelno for r in captured.records], [logging.WARNING, logging.INFO])

    def test_set_log_level(self):
        set_log_level("debug")
        self.assertEqual(get_log_level(), "DEBUG")
        set_log_level(None)
        self.assertEqual(get_log_level(), "INFO")


if __name__ == "__main__":
    unittest.main()
