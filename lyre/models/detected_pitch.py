from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional


class PitchEventKind(str, Enum):
    PITCH = "pitch"
    SILENCE = "silence"    # below the volume gate
    UNCLEAR = "unclear"    # loud enough, but no confident periodicity


@dataclass(frozen=True)
class DetectedPitch:
    """Per-frame pitch event emitted by the detector.

    - frequency: Hz, rounded to 0.1 (0.0 when no pitch)
    - confidence: normalized autocorrelation peak, 0..1
    - volume: RMS of the frame
    - cents: deviation from target_frequency, -50..+50
    """

    kind: PitchEventKind
    frequency: float
    confidence: float
    volume: float

    note: Optional[str] = None
    octave: Optional[int] = None
    cents: int = 0
    target_frequency: Optional[float] = None

    @property
    def has_pitch(self) -> bool:
        return self.kind is PitchEventKind.PITCH

    @classmethod
    def silence(cls, volume: float) -> "DetectedPitch":
        return cls(kind=PitchEventKind.SILENCE, frequency=0.0, confidence=0.0, volume=float(volume))

    @classmethod
    def unclear(cls, volume: float, confidence: float = 0.0) -> "DetectedPitch":
        return cls(
            kind=PitchEventKind.UNCLEAR,
            frequency=0.0,
            confidence=float(confidence),
            volume=float(volume),
        )

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["kind"] = self.kind.value
        return d
