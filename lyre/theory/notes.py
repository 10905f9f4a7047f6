from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import pretty_midi


# All 12 chromatic pitch classes, in order from C
CHROMATIC_NOTES: Tuple[str, ...] = (
    "C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B",
)

MIN_TABLE_OCTAVE = 2
MAX_TABLE_OCTAVE = 6

# Sane lyre/voice range for pitch lookups
MIN_NOTE_HZ = 50.0
MAX_NOTE_HZ = 2000.0

# MIDI number of C4; pretty_midi uses the A4 = 440 Hz (MIDI 69) reference.
_C4_MIDI = 60

# Octave-4 reference frequencies. Other octaves are derived by powers of two
# so that octave pairs are exactly double/half of each other.
_OCTAVE4_HZ: Tuple[float, ...] = tuple(
    float(pretty_midi.note_number_to_hz(_C4_MIDI + i)) for i in range(12)
)


def pitch_class_index(note: str) -> int:
    try:
        return CHROMATIC_NOTES.index(note)
    except ValueError:
        raise ValueError(f"Unknown pitch class {note!r}; expected one of {CHROMATIC_NOTES}") from None


def frequency_of(pitch_class: str, octave: int) -> float:
    """Equal-tempered frequency (Hz) of a pitch class in a given octave."""
    return _OCTAVE4_HZ[pitch_class_index(pitch_class)] * (2.0 ** (int(octave) - 4))


def note_name(pitch_class: str, octave: int) -> str:
    return f"{pitch_class}{int(octave)}"


@dataclass(frozen=True)
class NoteEntry:
    note: str
    octave: int
    frequency: float

    @property
    def name(self) -> str:
        return note_name(self.note, self.octave)


@dataclass(frozen=True)
class NoteMatch:
    """
    Nearest tabulated note for a frequency.

    cents is the signed deviation of the input from the table entry
    (positive = sharp). One entry per semitone keeps it within +/-50.
    """
    note: str
    octave: int
    frequency: float
    cents: float

    @property
    def name(self) -> str:
        return note_name(self.note, self.octave)


def build_note_table(
    min_octave: int = MIN_TABLE_OCTAVE,
    max_octave: int = MAX_TABLE_OCTAVE,
) -> Tuple[NoteEntry, ...]:
    entries: List[NoteEntry] = []
    for octave in range(int(min_octave), int(max_octave) + 1):
        for note in CHROMATIC_NOTES:
            entries.append(NoteEntry(note=note, octave=octave, frequency=frequency_of(note, octave)))
    return tuple(entries)


NOTE_TABLE: Tuple[NoteEntry, ...] = build_note_table()


def cents_between(frequency: float, reference: float) -> float:
    return float(1200.0 * math.log2(frequency / reference))


def nearest_note(
    frequency: Optional[float],
    *,
    min_octave: int = MIN_TABLE_OCTAVE,
    max_octave: int = MAX_TABLE_OCTAVE,
    min_hz: float = MIN_NOTE_HZ,
    max_hz: float = MAX_NOTE_HZ,
) -> Optional[NoteMatch]:
    """
    Closest table note to `frequency`, searched over [min_octave, max_octave].

    Returns None for frequencies outside [min_hz, max_hz], and for frequencies
    the table does not cover to within half a semitone (e.g. below C2 with
    the default octave range).
    """
    if frequency is None:
        return None
    f = float(frequency)
    if not math.isfinite(f) or f < min_hz or f > max_hz:
        return None

    if min_octave == MIN_TABLE_OCTAVE and max_octave == MAX_TABLE_OCTAVE:
        table = NOTE_TABLE
    else:
        table = build_note_table(min_octave, max_octave)

    best: Optional[NoteEntry] = None
    best_cents = 0.0
    for entry in table:
        cents = cents_between(f, entry.frequency)
        if best is None or abs(cents) < abs(best_cents):
            best = entry
            best_cents = cents

    if best is None or abs(best_cents) > 50.0:
        return None

    return NoteMatch(note=best.note, octave=best.octave, frequency=best.frequency, cents=best_cents)


__all__ = [
    "CHROMATIC_NOTES",
    "NOTE_TABLE",
    "NoteEntry",
    "NoteMatch",
    "build_note_table",
    "cents_between",
    "frequency_of",
    "nearest_note",
    "note_name",
    "pitch_class_index",
]
