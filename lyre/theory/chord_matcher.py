from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from lyre.theory.modes import NUM_STRINGS, ChordQuality
from lyre.theory.tuning import ModeLike, get_tuning


@dataclass(frozen=True)
class ChordMatch:
    name: str
    degree: str
    quality: Optional[ChordQuality]
    muted: bool = False

    @property
    def type_label(self) -> str:
        if self.muted or self.quality is None:
            return "All strings muted"
        return self.quality.value


# Returned when every string is muted and no shape covers that
MUTED = ChordMatch(name="Muted", degree="-", quality=None, muted=True)


def _normalize_states(string_states: Sequence[int]) -> Tuple[int, ...]:
    states = tuple(string_states)
    if len(states) != NUM_STRINGS:
        raise ValueError(f"expected {NUM_STRINGS} string states, got {len(states)}")
    out = []
    for s in states:
        v = int(s)
        if v not in (0, 1) or v != s:
            raise ValueError(f"string states must be 0/1, got {states}")
        out.append(v)
    return tuple(out)


def match_chord(key: str, string_states: Sequence[int], mode: ModeLike = "major") -> Optional[ChordMatch]:
    """
    Chord for an open/mute vector in (key, mode).

    Matching is exact and follows catalog order: the first shape equal to
    the vector wins. Returns MUTED for an all-zero vector that no shape
    covers, and None for any other unknown pattern.
    """
    states = _normalize_states(string_states)
    tuning = get_tuning(key, mode)

    for chord in tuning.chords:
        if chord.pattern == states:
            return ChordMatch(name=chord.name, degree=chord.degree, quality=chord.quality)

    if not any(states):
        return MUTED
    return None


def count_open_strings(string_states: Sequence[int]) -> int:
    return sum(1 for s in string_states if int(s) == 1)


__all__ = ["ChordMatch", "MUTED", "count_open_strings", "match_chord"]
