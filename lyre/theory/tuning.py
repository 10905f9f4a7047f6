from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple, Union

from lyre.theory.modes import ChordQuality, ChordShape, Mode, UnknownModeError, get_mode, mode_names
from lyre.theory.notes import CHROMATIC_NOTES, frequency_of, note_name, pitch_class_index

logger = logging.getLogger(__name__)

KEY_LIST: Tuple[str, ...] = CHROMATIC_NOTES

# Roots up to E (index 4) start a full octave higher than the rest, which keeps
# every key's strings within roughly octaves 3-5.
_HIGH_START_MAX_INDEX = 4
_HIGH_START_OCTAVE = 4
_LOW_START_OCTAVE = 3

ModeLike = Union[str, Mode]


def _resolve_mode(mode: ModeLike) -> Mode:
    return mode if isinstance(mode, Mode) else get_mode(mode)


@dataclass(frozen=True)
class StringNote:
    note: str
    octave: int
    frequency: float

    @property
    def name(self) -> str:
        return note_name(self.note, self.octave)


@dataclass(frozen=True)
class ResolvedChord:
    pattern: Tuple[int, ...]
    name: str
    degree: str
    quality: ChordQuality


@dataclass(frozen=True)
class Tuning:
    key: str
    mode: str
    strings: Tuple[StringNote, ...]
    chords: Tuple[ResolvedChord, ...]

    @property
    def string_names(self) -> Tuple[str, ...]:
        return tuple(s.note for s in self.strings)


def string_notes(root_key: str, mode: ModeLike = "major") -> List[str]:
    """Pitch class of each string for a key/mode."""
    root = pitch_class_index(root_key)
    return [CHROMATIC_NOTES[(root + interval) % 12] for interval in _resolve_mode(mode).intervals]


def assign_octaves(notes: Sequence[str], root_key: str) -> List[int]:
    """
    Octave for each string, low to high.

    The octave steps up whenever a string's chromatic index does not rise
    above the previous string's (the scale wrapped past B).
    """
    root = pitch_class_index(root_key)
    octave = _HIGH_START_OCTAVE if root <= _HIGH_START_MAX_INDEX else _LOW_START_OCTAVE

    octaves: List[int] = []
    prev_index = None
    for note in notes:
        index = pitch_class_index(note)
        if prev_index is not None and index <= prev_index:
            octave += 1
        octaves.append(octave)
        prev_index = index
    return octaves


def resolve_chord_name(root_key: str, shape: ChordShape, mode: ModeLike = "major") -> str:
    m = _resolve_mode(mode)
    strings = string_notes(root_key, m)
    return strings[m.root_string(shape.degree)] + shape.quality.suffix


def string_frequencies(root_key: str, mode: ModeLike = "major") -> Tuple[StringNote, ...]:
    notes = string_notes(root_key, mode)
    octaves = assign_octaves(notes, root_key)
    return tuple(
        StringNote(note=n, octave=o, frequency=frequency_of(n, o))
        for n, o in zip(notes, octaves)
    )


def build_tuning(root_key: str, mode: ModeLike = "major") -> Tuning:
    m = _resolve_mode(mode)
    chords = tuple(
        ResolvedChord(
            pattern=shape.pattern,
            name=resolve_chord_name(root_key, shape, m),
            degree=shape.degree,
            quality=shape.quality,
        )
        for shape in m.shapes
    )
    return Tuning(key=root_key, mode=m.name, strings=string_frequencies(root_key, m), chords=chords)


@functools.lru_cache(maxsize=None)
def _cached_tuning(mode_name: str, key: str) -> Tuning:
    return build_tuning(key, mode_name)


def _is_registered(mode: Mode) -> bool:
    try:
        return get_mode(mode.name) is mode
    except UnknownModeError:
        return False


def get_tuning(key: str, mode: ModeLike = "major") -> Tuning:
    """
    Tuning for (mode, key). Registered modes are served from a process-wide
    cache; a Mode object that is not the registry's instance for its name is
    built fresh on every call.
    """
    m = _resolve_mode(mode)
    pitch_class_index(key)
    if not _is_registered(m):
        return build_tuning(key, m)
    return _cached_tuning(m.name, key)


def precompute_tunings() -> Dict[str, Dict[str, Tuning]]:
    """Build every registered mode x key entry; returns tunings[mode][key]."""
    table: Dict[str, Dict[str, Tuning]] = {}
    for name in mode_names():
        table[name] = {key: get_tuning(key, name) for key in KEY_LIST}
    logger.debug("precomputed %d tunings", sum(len(v) for v in table.values()))
    return table


__all__ = [
    "KEY_LIST",
    "ResolvedChord",
    "StringNote",
    "Tuning",
    "assign_octaves",
    "build_tuning",
    "get_tuning",
    "precompute_tunings",
    "resolve_chord_name",
    "string_frequencies",
    "string_notes",
]
