import unittest

import numpy as np

from beat_estimator import BeatEstimator
from config import InvalidBufferLengthError
from frame_source import AnalyserFrameSource

QUIET = np.full(1024, 10, dtype=np.uint8)
LOUD = np.full(1024, 200, dtype=np.uint8)


def run_spikes(estimator, period_ms, end_ms, tick_ms=10, start_ms=0):
    """Drive the estimator at a fixed tick with a loud frame every period_ms."""
    results = []
    for t in range(start_ms, end_ms + 1, tick_ms):
        frame = LOUD if t > 0 and t % period_ms == 0 else QUIET
        results.append((t, estimator.detect_beat(frame, now_ms=t)))
    return results


class TestBeatEstimator(unittest.TestCase):
    def test_compute_energy_uses_lowest_tenth(self):
        spectrum = np.full(1024, 100, dtype=np.uint8)
        spectrum[:102] = 2
        self.assertAlmostEqual(BeatEstimator().compute_energy(spectrum), 4.0)

    def test_not_ready_until_history_full(self):
        estimator = BeatEstimator()
        for i in range(42):
            result = estimator.detect_beat(LOUD, now_ms=i * 10)
            self.assertFalse(result.is_beat)
            self.assertEqual(result.bpm, 0.0)
            self.assertEqual(result.confidence, 0)
            self.assertEqual(result.histogram, [])
        self.assertEqual(len(estimator.energy_history), 42)

        estimator.detect_beat(QUIET, now_ms=420)
        self.assertEqual(len(estimator.energy_history), 43)

    def test_120_bpm_spikes(self):
        estimator = BeatEstimator()
        results = run_spikes(estimator, period_ms=500, end_ms=3000)

        beat_times = [t for t, r in results if r.is_beat]
        self.assertEqual(beat_times, [500, 1000, 1500, 2000, 2500, 3000])

        last = results[-1][1]
        self.assertAlmostEqual(last.bpm, 120.0, delta=2.0)
        self.assertEqual(last.confidence, 100)
        self.assertEqual(last.consensus_bpm, 120.0)
        self.assertEqual(last.consensus_confidence, 100)
        self.assertEqual(last.histogram[0].bpm, 120)

    def test_refractory_period_spaces_beats(self):
        estimator = BeatEstimator()
        results = run_spikes(estimator, period_ms=200, end_ms=4000)

        beat_times = [t for t, r in results if r.is_beat]
        self.assertGreater(len(beat_times), 3)
        for earlier, later in zip(beat_times, beat_times[1:]):
            self.assertGreaterEqual(later - earlier, 300)

    def test_bpm_is_clamped(self):
        estimator = BeatEstimator()
        results = run_spikes(estimator, period_ms=2000, end_ms=4000)
        self.assertEqual(results[-1][1].bpm, 40.0)

    def test_histogram_buckets_and_percentages(self):
        estimator = BeatEstimator()
        estimator.bpm_history.extend([120, 121, 119, 90])

        histogram = estimator._bpm_histogram()

        self.assertEqual([(b.bpm, b.percentage) for b in histogram], [(120, 75), (90, 25)])
        self.assertEqual(sum(b.percentage for b in histogram), 100)

    def test_histories_are_bounded(self):
        estimator = BeatEstimator()
        run_spikes(estimator, period_ms=500, end_ms=20000)
        self.assertEqual(len(estimator.energy_history), 43)
        self.assertEqual(len(estimator.beat_times), 8)
        self.assertEqual(len(estimator.bpm_history), 30)

    def test_set_window_size_keeps_history(self):
        estimator = BeatEstimator(window_size=2048)
        run_spikes(estimator, period_ms=500, end_ms=3000)
        before = (
            list(estimator.energy_history),
            list(estimator.beat_times),
            list(estimator.bpm_history),
            estimator.last_beat_time,
            estimator.bpm,
        )

        for size in (512, 1024, 4096, 8192):
            estimator.set_window_size(size)
            self.assertEqual(estimator.window_size, size)

        after = (
            list(estimator.energy_history),
            list(estimator.beat_times),
            list(estimator.bpm_history),
            estimator.last_beat_time,
            estimator.bpm,
        )
        self.assertEqual(before, after)

    def test_invalid_window_size_rejected(self):
        estimator = BeatEstimator(window_size=2048)
        with self.assertRaises(InvalidBufferLengthError):
            estimator.set_window_size(3000)
        self.assertEqual(estimator.window_size, 2048)

    def test_reset_matches_fresh_instance(self):
        estimator = BeatEstimator()
        run_spikes(estimator, period_ms=500, end_ms=3000)
        estimator.reset()

        fresh = BeatEstimator()
        self.assertEqual(list(estimator.energy_history), list(fresh.energy_history))
        self.assertEqual(list(estimator.beat_times), list(fresh.beat_times))
        self.assertEqual(list(estimator.bpm_history), list(fresh.bpm_history))
        self.assertEqual(estimator.last_beat_time, fresh.last_beat_time)
        self.assertEqual(estimator.bpm, fresh.bpm)
        self.assertEqual(estimator.detect_beat(QUIET, now_ms=0), fresh.detect_beat(QUIET, now_ms=0))

    def test_detect_from_source_with_clock(self):
        source = AnalyserFrameSource(buffer_length=1024)
        estimator = BeatEstimator(source, window_size=1024, clock=lambda: 1234.0)

        result = estimator.detect_beat()

        self.assertFalse(result.is_beat)
        self.assertEqual(result.energy, 0.0)


if __name__ == "__main__":
    unittest.main()
