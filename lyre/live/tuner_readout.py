from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

from lyre.models.detected_pitch import DetectedPitch
from lyre.theory.tuning import StringNote

IN_TUNE_CENTS = 5
CLOSE_CENTS = 15

# RMS that fills the mic level meter
FULL_SCALE_VOLUME = 0.15


class TuningAccuracy(str, Enum):
    IN_TUNE = "in_tune"
    CLOSE = "close"
    OFF = "off"


class VolumeLevel(str, Enum):
    LOW = "low"
    GOOD = "good"
    HOT = "hot"


def classify_cents(cents: float) -> TuningAccuracy:
    c = abs(round(cents))
    if c <= IN_TUNE_CENTS:
        return TuningAccuracy.IN_TUNE
    if c <= CLOSE_CENTS:
        return TuningAccuracy.CLOSE
    return TuningAccuracy.OFF


def needle_position(cents: float) -> float:
    """Gauge position in percent: -50 cents -> 0, 0 -> 50, +50 -> 100."""
    clamped = max(-50.0, min(50.0, float(cents)))
    return (clamped + 50.0) / 100.0 * 100.0


@dataclass(frozen=True)
class MeterReading:
    percent: float
    level: VolumeLevel


def volume_meter(volume: float, full_scale: float = FULL_SCALE_VOLUME) -> MeterReading:
    pct = min(100.0, max(0.0, float(volume)) / full_scale * 100.0)
    if pct > 60.0:
        level = VolumeLevel.HOT
    elif pct > 20.0:
        level = VolumeLevel.GOOD
    else:
        level = VolumeLevel.LOW
    return MeterReading(percent=pct, level=level)


class CentsSmoother:
    """Exponential moving average of cents across pitched frames."""

    def __init__(self, alpha: float = 0.4):
        if not 0.0 < alpha <= 1.0:
            raise ValueError("alpha must be in (0, 1]")
        self.alpha = float(alpha)
        self.value = 0.0

    def update(self, pitch: DetectedPitch) -> Optional[float]:
        """Fold in a pitched event; unpitched events leave the value as is."""
        if not pitch.has_pitch or pitch.confidence <= 0:
            return None
        self.value = self.value * (1.0 - self.alpha) + pitch.cents * self.alpha
        return self.value

    @property
    def display_cents(self) -> int:
        return int(round(self.value))

    def reset(self) -> None:
        self.value = 0.0


def strings_with_note(strings: Sequence[StringNote], note: Optional[str]) -> List[int]:
    """Indices of the strings tuned to a detected pitch class."""
    if note is None:
        return []
    return [i for i, s in enumerate(strings) if s.note == note]


__all__ = [
    "CentsSmoother",
    "MeterReading",
    "TuningAccuracy",
    "VolumeLevel",
    "classify_cents",
    "needle_position",
    "strings_with_note",
    "volume_meter",
]
