"""
Tuning modes for the 6-string lyre.

Each mode tunes the strings to six scale degrees above the key's root and
carries the catalog of chord shapes playable in that tuning. A shape is a
pattern of open (1) and muted (0) strings. Patterns never change between
keys; only the note names they resolve to do.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Tuple

NUM_STRINGS = 6


class ChordQuality(str, Enum):
    MAJOR = "Major"
    MINOR = "Minor"
    POWER = "Power"
    MINOR_7TH = "Minor 7th"
    MAJOR_7TH = "Major 7th"
    DOMINANT_7TH = "Dominant 7th"
    DIMINISHED = "Diminished"

    @property
    def suffix(self) -> str:
        return CHORD_SUFFIXES[self]


CHORD_SUFFIXES: Mapping[ChordQuality, str] = MappingProxyType({
    ChordQuality.MAJOR: "",
    ChordQuality.POWER: "5",
    ChordQuality.MINOR: "m",
    ChordQuality.MINOR_7TH: "m7",
    ChordQuality.MAJOR_7TH: "maj7",
    ChordQuality.DOMINANT_7TH: "7",
    ChordQuality.DIMINISHED: "dim",
})


class ModeValidationError(ValueError):
    pass


class UnknownModeError(KeyError):
    pass


def _as_pattern(values: Iterable[int]) -> Tuple[int, ...]:
    pattern = tuple(int(v) for v in values)
    if len(pattern) != NUM_STRINGS:
        raise ModeValidationError(f"pattern must have {NUM_STRINGS} entries, got {len(pattern)}")
    if any(v not in (0, 1) for v in pattern):
        raise ModeValidationError(f"pattern entries must be 0 or 1, got {pattern}")
    return pattern


@dataclass(frozen=True)
class ChordShape:
    pattern: Tuple[int, ...]
    degree: str
    quality: ChordQuality

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", _as_pattern(self.pattern))
        object.__setattr__(self, "quality", ChordQuality(self.quality))


@dataclass(frozen=True)
class Mode:
    """
    Immutable mode descriptor.

    intervals:    semitone offsets from the root for strings 1-6
    shapes:       chord catalog, in match-priority order
    degree_roots: degree label -> index of the string carrying the chord root
    """
    name: str
    label: str
    intervals: Tuple[int, ...]
    shapes: Tuple[ChordShape, ...]
    degree_roots: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        intervals = tuple(int(i) for i in self.intervals)
        if len(intervals) != NUM_STRINGS:
            raise ModeValidationError(
                f"mode {self.name!r} needs exactly {NUM_STRINGS} intervals, got {len(intervals)}"
            )
        if any(not 0 <= i < 12 for i in intervals):
            raise ModeValidationError(f"mode {self.name!r} intervals must lie in 0..11: {intervals}")

        roots = dict(self.degree_roots)
        for degree, index in roots.items():
            if not 0 <= int(index) < NUM_STRINGS:
                raise ModeValidationError(
                    f"mode {self.name!r} maps degree {degree!r} to string {index}, outside 0..{NUM_STRINGS - 1}"
                )

        shapes = tuple(self.shapes)
        for shape in shapes:
            if shape.degree not in roots:
                raise ModeValidationError(
                    f"mode {self.name!r} shape {shape.pattern} uses degree {shape.degree!r} "
                    "missing from its degree root map"
                )

        object.__setattr__(self, "intervals", intervals)
        object.__setattr__(self, "shapes", shapes)
        object.__setattr__(self, "degree_roots", MappingProxyType({k: int(v) for k, v in roots.items()}))

    def root_string(self, degree: str) -> int:
        return self.degree_roots[degree]


def _shape(pattern: List[int], degree: str, quality: ChordQuality) -> ChordShape:
    return ChordShape(pattern=tuple(pattern), degree=degree, quality=quality)


MAJOR = Mode(
    name="major",
    label="Major",
    intervals=(0, 2, 4, 5, 7, 9),
    shapes=(
        _shape([1, 0, 1, 0, 1, 0], "I", ChordQuality.MAJOR),
        _shape([1, 0, 0, 0, 1, 0], "I5", ChordQuality.POWER),
        _shape([0, 1, 0, 1, 0, 1], "ii", ChordQuality.MINOR),
        _shape([0, 1, 0, 0, 0, 1], "II5", ChordQuality.POWER),
        _shape([1, 1, 0, 1, 0, 1], "ii7", ChordQuality.MINOR_7TH),
        _shape([0, 1, 1, 0, 1, 0], "iii7", ChordQuality.MINOR_7TH),
        _shape([1, 1, 0, 0, 1, 0], "IV", ChordQuality.MAJOR),
        _shape([1, 0, 0, 1, 0, 0], "IV5", ChordQuality.POWER),
        _shape([0, 1, 0, 0, 1, 0], "V5", ChordQuality.POWER),
        _shape([1, 0, 1, 0, 0, 1], "vi", ChordQuality.MINOR),
        _shape([0, 0, 1, 0, 0, 1], "VI5", ChordQuality.POWER),
    ),
    degree_roots={
        "I": 0, "I5": 0,
        "ii": 1, "II5": 1, "ii7": 1,
        "iii7": 2,
        "IV": 3, "IV5": 3,
        "V5": 4,
        "vi": 5, "VI5": 5,
    },
)

# Dorian differs from Major only on the 3rd string (flatted).
DORIAN = Mode(
    name="dorian",
    label="Dorian",
    intervals=(0, 2, 3, 5, 7, 9),
    shapes=(
        _shape([1, 0, 1, 0, 1, 0], "i", ChordQuality.MINOR),
        _shape([1, 0, 0, 0, 1, 0], "i5", ChordQuality.POWER),
        _shape([0, 1, 0, 1, 0, 1], "ii", ChordQuality.MINOR),
        _shape([0, 1, 0, 0, 0, 1], "ii5", ChordQuality.POWER),
        _shape([1, 1, 0, 1, 0, 1], "ii7", ChordQuality.MINOR_7TH),
        # 2-b3-5: major 7th on the flat third, no fifth
        _shape([0, 1, 1, 0, 1, 0], "♭IIImaj7", ChordQuality.MAJOR_7TH),
        _shape([1, 1, 0, 0, 1, 0], "IV", ChordQuality.MAJOR),
        _shape([1, 0, 0, 1, 0, 0], "IV5", ChordQuality.POWER),
        # b3-4-6: dominant 7th on the fourth, no fifth
        _shape([0, 0, 1, 1, 0, 1], "IV7", ChordQuality.DOMINANT_7TH),
        _shape([1, 0, 1, 1, 0, 1], "IV7", ChordQuality.DOMINANT_7TH),
        _shape([0, 1, 0, 0, 1, 0], "v5", ChordQuality.POWER),
        _shape([1, 0, 1, 0, 0, 1], "vi°", ChordQuality.DIMINISHED),
    ),
    degree_roots={
        "i": 0, "i5": 0,
        "ii": 1, "ii5": 1, "ii7": 1,
        "♭IIImaj7": 2,
        "IV": 3, "IV5": 3, "IV7": 3,
        "v5": 4,
        "vi°": 5,
    },
)


_registry_lock = threading.Lock()
_MODES: Dict[str, Mode] = {}


def register_mode(mode: Mode) -> Mode:
    """
    Add a mode to the registry. A name can only be registered once, since
    tunings already cached for it are never rebuilt.
    """
    if not isinstance(mode, Mode):
        raise TypeError(f"expected Mode, got {type(mode).__name__}")
    with _registry_lock:
        if mode.name in _MODES:
            raise ModeValidationError(f"mode {mode.name!r} is already registered")
        _MODES[mode.name] = mode
    return mode


def get_mode(name: str) -> Mode:
    try:
        return _MODES[name]
    except KeyError:
        raise UnknownModeError(name) from None


def mode_names() -> List[str]:
    with _registry_lock:
        return list(_MODES)


def mode_labels() -> Dict[str, str]:
    with _registry_lock:
        return {name: m.label for name, m in _MODES.items()}


register_mode(MAJOR)
register_mode(DORIAN)

DEFAULT_MODE = MAJOR.name


__all__ = [
    "CHORD_SUFFIXES",
    "ChordQuality",
    "ChordShape",
    "DEFAULT_MODE",
    "DORIAN",
    "MAJOR",
    "Mode",
    "ModeValidationError",
    "NUM_STRINGS",
    "UnknownModeError",
    "get_mode",
    "mode_labels",
    "mode_names",
    "register_mode",
]
