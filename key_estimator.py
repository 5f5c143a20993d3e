"""
ToneScope - Key estimator
Krumhansl-Schmuckler template correlation over a bounded note history,
with a consensus vote over recent instantaneous estimates.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from config import KeyConfig, KeyMode
from logging_utils import log_event
from note_mapper import NOTE_NAMES

# Krumhansl-Schmuckler probe-tone ratings, tonic first
MAJOR_PROFILE = np.array([6.35, 2.23, 3.48, 2.33, 4.38, 4.09, 2.52, 5.19, 2.39, 3.66, 2.29, 2.88])
MINOR_PROFILE = np.array([6.33, 2.68, 3.52, 5.38, 2.60, 3.53, 2.54, 4.75, 3.98, 2.69, 3.34, 3.17])

PROFILES = {
    KeyMode.MAJOR: MAJOR_PROFILE,
    KeyMode.MINOR: MINOR_PROFILE,
}

COLLECTING_DATA = "Collecting data..."

_PITCH_CLASS_INDEX = {name: i for i, name in enumerate(NOTE_NAMES)}


def key_label(root: str, mode: KeyMode) -> str:
    return f"{root} {mode.name.title()}"


@dataclass(frozen=True)
class KeyVote:
    key: str
    vote_percentage: int


@dataclass(frozen=True)
class KeyEstimate:
    key: str
    confidence: int
    consensus_key: str
    consensus_confidence: int
    histogram: list[KeyVote] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return self.key != COLLECTING_DATA


def _correlate(observed: np.ndarray, profile: np.ndarray, root: int) -> float:
    """Dot product of the observed profile with the reference read from ``root``.

    Pitch class ``i`` is weighted by ``profile[(i + root) % 12]``, so a single
    repeated pitch class ``p`` scores highest at root ``(12 - p) % 12``.
    """
    return float(np.dot(observed, np.roll(profile, -root)))


class KeyEstimator:
    def __init__(self, config: Optional[KeyConfig] = None):
        self.config = config or KeyConfig()
        self.note_history: deque[str] = deque(maxlen=self.config.note_history_size)
        self.vote_history: deque[str] = deque(maxlen=self.config.vote_history_size)
        # Largest correlation a normalized (sum 1) profile can reach. Dividing by
        # the sum of weights instead would cap a pure single-note history near 14%.
        self._max_correlation = float(max(MAJOR_PROFILE.max(), MINOR_PROFILE.max()))

    def add_note(self, pitch_class: Optional[str]) -> bool:
        """Record a pitch-class observation. Empty or unknown names are ignored."""
        if not pitch_class or pitch_class not in _PITCH_CLASS_INDEX:
            if pitch_class:
                log_event("DEBUG", "Key", "Ignored unknown pitch class", pitch_class=pitch_class)
            return False
        self.note_history.append(pitch_class)
        return True

    def estimate_key(self) -> KeyEstimate:
        if len(self.note_history) < self.config.min_notes:
            return KeyEstimate(
                key=COLLECTING_DATA,
                confidence=0,
                consensus_key=COLLECTING_DATA,
                consensus_confidence=0,
            )

        counts = np.zeros(12)
        for name in self.note_history:
            counts[_PITCH_CLASS_INDEX[name]] += 1
        observed = counts / counts.sum()

        best_key = ''
        best_correlation = -1.0
        # Fixed order, major before minor, strict '>' so ties keep the first label
        for root, root_name in enumerate(NOTE_NAMES):
            for mode, profile in PROFILES.items():
                correlation = _correlate(observed, profile, root)
                if correlation > best_correlation:
                    best_correlation = correlation
                    best_key = key_label(root_name, mode)

        confidence = int(round(100.0 * best_correlation / self._max_correlation))
        confidence = max(0, min(100, confidence))

        self.vote_history.append(best_key)
        consensus_key, consensus_count, histogram = self._tally_votes()
        consensus_confidence = int(round(100.0 * consensus_count / len(self.vote_history)))

        return KeyEstimate(
            key=best_key,
            confidence=confidence,
            consensus_key=consensus_key,
            consensus_confidence=consensus_confidence,
            histogram=histogram,
        )

    def _tally_votes(self) -> tuple[str, int, list[KeyVote]]:
        # Recounted from scratch; the history is at most a few dozen labels
        votes: dict[str, int] = {}
        for label in self.vote_history:
            votes[label] = votes.get(label, 0) + 1

        mode_key, mode_count = '', 0
        for label, count in votes.items():
            if count > mode_count:
                mode_key, mode_count = label, count

        total = len(self.vote_history)
        histogram = [
            KeyVote(key=label, vote_percentage=int(round(100.0 * count / total)))
            for label, count in votes.items()
        ]
        histogram.sort(key=lambda v: v.vote_percentage, reverse=True)
        return mode_key, mode_count, histogram

    def clear(self) -> None:
        self.note_history.clear()
        self.vote_history.clear()
        log_event("DEBUG", "Key", "History cleared")
