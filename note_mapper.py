import math
from dataclasses import dataclass
from typing import Optional

NOTE_NAMES = ('C', 'C#', 'D', 'D#', 'E', 'F', 'F#', 'G', 'G#', 'A', 'A#', 'B')

A4_HZ = 440.0
C0_HZ = A4_HZ * 2 ** -4.75


@dataclass(frozen=True)
class NoteEvent:
    """A frequency quantized to the nearest equal-tempered note"""
    note: str          # Label, e.g. "A4"
    note_name: str     # Pitch class, e.g. "A"
    octave: int
    frequency: float   # Original frequency (Hz)
    cents: int         # Deviation from the note, -50..+50


def frequency_to_note(frequency: Optional[float]) -> Optional[NoteEvent]:
    """Map a frequency in Hz to its nearest note; None for missing or non-positive input."""
    if frequency is None or not frequency > 0 or math.isinf(frequency):
        return None

    half_steps = 12 * math.log2(frequency / C0_HZ)
    nearest = math.floor(half_steps + 0.5)
    note_name = NOTE_NAMES[nearest % 12]
    octave = nearest // 12
    cents = math.floor((half_steps - nearest) * 100 + 0.5)

    return NoteEvent(
        note=f"{note_name}{octave}",
        note_name=note_name,
        octave=octave,
        frequency=float(frequency),
        cents=int(cents),
    )
