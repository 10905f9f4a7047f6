from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from lyre.models.detected_pitch import DetectedPitch, PitchEventKind
from lyre.theory.notes import MAX_NOTE_HZ, MIN_NOTE_HZ, nearest_note

# A lag whose correlation beats this is taken as a period candidate.
GOOD_CORRELATION = 0.9
# Used only when nothing beat GOOD_CORRELATION.
FALLBACK_CORRELATION = 0.8


@dataclass(frozen=True)
class CorrelationResult:
    frequency: Optional[float]
    confidence: float

    @property
    def found(self) -> bool:
        return self.frequency is not None


def rms_volume(frame: np.ndarray) -> float:
    x = np.asarray(frame, dtype=np.float64).reshape(-1)
    if x.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(x * x)))


def _rising_zero_crossing(x: np.ndarray, limit: int) -> int:
    """First i < limit with x[i] < 0 <= x[i + 1]; 0 if there is none."""
    limit = min(limit, x.shape[0] - 1)
    if limit <= 0:
        return 0
    hits = np.nonzero((x[:limit] < 0.0) & (x[1:limit + 1] >= 0.0))[0]
    return int(hits[0]) if hits.size else 0


def auto_correlate(
    frame: np.ndarray,
    sample_rate: float,
    *,
    min_hz: float = MIN_NOTE_HZ,
    max_hz: float = MAX_NOTE_HZ,
    good_correlation: float = GOOD_CORRELATION,
    fallback_correlation: float = FALLBACK_CORRELATION,
) -> CorrelationResult:
    """
    Time-domain autocorrelation pitch estimate for one frame.

    Lags are scanned upward from sample_rate/max_hz. The scan stops at the
    first lag after a >good_correlation peak where correlation stops
    improving, and that peak is refined by parabolic interpolation.

    Known tradeoff: on noisy input the early exit can settle on a local peak
    before the true best lag. The only safety net is the integer-lag fallback
    at fallback_correlation.
    """
    x = np.asarray(frame, dtype=np.float64).reshape(-1)
    half = x.shape[0] // 2
    if half < 2 or sample_rate <= 0:
        return CorrelationResult(frequency=None, confidence=0.0)

    # start at a rising zero crossing to reduce phase-dependent noise
    start = _rising_zero_crossing(x, half)
    ref = x[start:half]
    ref_energy = float(np.dot(ref, ref))

    min_lag = max(1, int(sample_rate // max_hz))
    max_lag = min(int(sample_rate // min_hz), half)

    correlations: Dict[int, float] = {}

    def correlation_at(lag: int) -> float:
        c = correlations.get(lag)
        if c is None:
            shifted = x[start + lag:half + lag]
            energy = float(np.dot(shifted, shifted))
            norm = math.sqrt(ref_energy * energy)
            c = float(np.dot(ref, shifted)) / norm if norm > 0 else 0.0
            correlations[lag] = c
        return c

    best_lag = -1
    best = 0.0
    fallback_lag = -1
    fallback = 0.0

    for lag in range(min_lag, max_lag):
        c = correlation_at(lag)

        if c > good_correlation and c > best:
            best = c
            best_lag = lag
        elif best_lag > 0:
            # correlation has started to fall after a good peak
            return CorrelationResult(
                frequency=float(sample_rate) / _refine_lag(correlation_at, best_lag, half),
                confidence=best,
            )

        if c > fallback_correlation and c > fallback:
            fallback = c
            fallback_lag = lag

    if best_lag > 0:
        # scan ran out while still climbing
        return CorrelationResult(frequency=float(sample_rate) / best_lag, confidence=best)

    if fallback_lag > 0:
        return CorrelationResult(frequency=float(sample_rate) / fallback_lag, confidence=fallback)

    return CorrelationResult(frequency=None, confidence=0.0)


def _refine_lag(correlation_at, lag: int, half: int) -> float:
    """Parabolic interpolation of the peak around `lag`."""
    if lag <= 1 or lag >= half - 1:
        return float(lag)

    prev = correlation_at(lag - 1)
    curr = correlation_at(lag)
    nxt = correlation_at(lag + 1)

    denom = 2.0 * (2.0 * curr - prev - nxt)
    shift = (nxt - prev) / denom if denom != 0.0 else 0.0
    if not math.isfinite(shift):
        shift = 0.0

    refined = lag + shift
    return refined if refined > 0 else float(lag)


def estimate_pitch(
    frame: np.ndarray,
    sample_rate: float,
    *,
    min_volume: float = 0.002,
    min_confidence: float = 0.6,
    min_hz: float = MIN_NOTE_HZ,
    max_hz: float = MAX_NOTE_HZ,
    good_correlation: float = GOOD_CORRELATION,
    fallback_correlation: float = FALLBACK_CORRELATION,
) -> DetectedPitch:
    """One detection pass: volume gate, autocorrelation, note lookup."""
    volume = rms_volume(frame)
    if volume < min_volume:
        return DetectedPitch.silence(volume)

    result = auto_correlate(
        frame,
        sample_rate,
        min_hz=min_hz,
        max_hz=max_hz,
        good_correlation=good_correlation,
        fallback_correlation=fallback_correlation,
    )
    if not result.found or result.confidence <= min_confidence:
        return DetectedPitch.unclear(volume, result.confidence)

    match = nearest_note(result.frequency, min_hz=min_hz, max_hz=max_hz)
    if match is None:
        return DetectedPitch.unclear(volume, result.confidence)

    return DetectedPitch(
        kind=PitchEventKind.PITCH,
        frequency=round(float(result.frequency), 1),
        confidence=float(result.confidence),
        volume=volume,
        note=match.note,
        octave=match.octave,
        cents=int(round(match.cents)),
        target_frequency=match.frequency,
    )


__all__ = [
    "CorrelationResult",
    "FALLBACK_CORRELATION",
    "GOOD_CORRELATION",
    "auto_correlate",
    "estimate_pitch",
    "rms_volume",
]
