"""
Karplus-Strong plucked-string synthesis.

A delay line one period long is filled with noise (the pluck) and fed back
through a one-pole low-pass and a loss factor. The delay length sets the
pitch; the filter and loss set the timbre and decay.

The delay length is round(sample_rate / frequency), so pitch is quantized to
integer periods: at most half a sample per period, which at 44.1 kHz is about
2 cents near 100 Hz and up to about 20 cents near 1 kHz. This is accepted;
there is no fractional delay.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.signal import lfilter

DEFAULT_SAMPLE_RATE = 44100
MIN_FREQUENCY_HZ = 20.0

# excitation samples at the pluck node are scaled by this
PLUCK_NODE_GAIN = 0.3


@dataclass
class KarplusStrongParams:
    brightness: float = 0.5        # 0 = dark/mellow, 1 = bright/metallic
    damping: float = 0.996         # loss per pass; 0.99 dies fast, 0.999 rings long
    pluck_position: float = 0.5    # 0 = at the bridge, 0.5 = middle of the string
    body_resonance: float = 0.3    # amount of body band-pass mixed in
    body_frequency: float = 180.0
    body_q: float = 3.0


@dataclass
class EnvelopeParams:
    attack: float = 0.003
    decay: float = 0.08
    sustain_level: float = 0.6
    floor: float = 0.001


@dataclass
class PluckRequest:
    frequency: float
    duration: float = 2.0
    volume: float = 0.3
    params: Optional[KarplusStrongParams] = None


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def clamp_frequency(frequency: float, sample_rate: int) -> float:
    f = float(frequency)
    if not math.isfinite(f):
        f = MIN_FREQUENCY_HZ
    return min(max(f, MIN_FREQUENCY_HZ), sample_rate / 2.0)


def delay_length(frequency: float, sample_rate: int = DEFAULT_SAMPLE_RATE) -> int:
    f = clamp_frequency(frequency, sample_rate)
    return max(2, _round_half_up(sample_rate / f))


def randomized_params(rng: Optional[np.random.Generator] = None) -> KarplusStrongParams:
    """Slight per-pluck variation so repeated notes do not sound identical."""
    rng = rng or np.random.default_rng()
    return KarplusStrongParams(
        brightness=0.35 + float(rng.random()) * 0.15,
        pluck_position=0.4 + float(rng.random()) * 0.2,
        damping=0.995 + float(rng.random()) * 0.003,
        body_resonance=0.25,
    )


def excitation(length: int, pluck_position: float, rng: np.random.Generator) -> np.ndarray:
    """Noise burst with the harmonics that have a node at the pluck point attenuated."""
    noise = rng.random(length) * 2.0 - 1.0
    pluck_sample = _round_half_up(pluck_position * length)
    if pluck_sample > 0:
        step = _round_half_up(length / pluck_sample)
        if step > 1:
            noise[::step] *= PLUCK_NODE_GAIN
    return noise


def body_filter_coefficients(frequency: float, q: float, sample_rate: int) -> Tuple[np.ndarray, np.ndarray]:
    """Second-order band-pass (0 dB peak) for the instrument body."""
    w = 2.0 * math.pi * frequency / sample_rate
    alpha = math.sin(w) / (2.0 * q)
    a0 = 1.0 + alpha
    b = np.array([alpha / a0, 0.0, -alpha / a0])
    a = np.array([1.0, -2.0 * math.cos(w) / a0, (1.0 - alpha) / a0])
    return b, a


def lowpass_coefficients(cutoff: float, q: float, sample_rate: int) -> Tuple[np.ndarray, np.ndarray]:
    cutoff = min(float(cutoff), 0.45 * sample_rate)
    w = 2.0 * math.pi * cutoff / sample_rate
    alpha = math.sin(w) / (2.0 * q)
    cos_w = math.cos(w)
    a0 = 1.0 + alpha
    b = np.array([(1.0 - cos_w) / 2.0, 1.0 - cos_w, (1.0 - cos_w) / 2.0]) / a0
    a = np.array([1.0, -2.0 * cos_w / a0, (1.0 - alpha) / a0])
    return b, a


def karplus_strong(
    frequency: float,
    duration: float,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    params: Optional[KarplusStrongParams] = None,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Raw string output (no envelope), ceil(sample_rate * duration) samples."""
    if duration < 0:
        raise ValueError(f"duration must be >= 0, got {duration}")
    p = params or KarplusStrongParams()
    rng = rng or np.random.default_rng()

    n = int(math.ceil(sample_rate * duration))
    N = delay_length(frequency, sample_rate)

    # plain list: per-element access is much cheaper than on an ndarray
    line = excitation(N, p.pluck_position, rng).tolist()

    coeff = 0.3 + p.brightness * 0.5
    damping = float(p.damping)

    raw = np.zeros(n, dtype=np.float64)
    prev = 0.0
    idx = 0
    for i in range(n):
        cur = line[idx]
        raw[i] = cur
        # one-pole low-pass against the previous filtered sample, then loss
        prev = coeff * cur + (1.0 - coeff) * prev
        line[idx] = prev * damping
        idx += 1
        if idx == N:
            idx = 0

    if p.body_resonance > 0 and n:
        b, a = body_filter_coefficients(p.body_frequency, p.body_q, sample_rate)
        raw = raw + p.body_resonance * lfilter(b, a, raw)

    return raw


def envelope(n: int, sample_rate: int, duration: float, env: Optional[EnvelopeParams] = None) -> np.ndarray:
    """
    Linear attack to 1, exponential decay to the sustain level, then an
    exponential release reaching `floor` at `duration`.
    """
    e = env or EnvelopeParams()
    t = np.arange(n, dtype=np.float64) / float(sample_rate)
    out = np.empty(n, dtype=np.float64)

    t_attack = e.attack
    t_decay = e.attack + e.decay

    attack = t < t_attack
    out[attack] = t[attack] / t_attack if t_attack > 0 else 1.0

    decay = (~attack) & (t < t_decay)
    out[decay] = e.sustain_level ** ((t[decay] - t_attack) / e.decay)

    release = t >= t_decay
    span = duration - t_decay
    if span > 0:
        out[release] = e.sustain_level * (e.floor / e.sustain_level) ** ((t[release] - t_decay) / span)
    else:
        out[release] = e.floor
    return out


def synthesize_pluck(
    frequency: float,
    duration: float = 2.0,
    volume: float = 0.3,
    params: Optional[KarplusStrongParams] = None,
    *,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    env: Optional[EnvelopeParams] = None,
    warmth: bool = True,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """
    One plucked-string voice as float32 samples, ceil(sample_rate * duration)
    long. Every call has its own delay line and filter state.
    """
    f = clamp_frequency(frequency, sample_rate)
    volume = min(max(float(volume), 0.0), 1.0)

    y = karplus_strong(f, duration, sample_rate, params, rng)
    if y.size == 0:
        return y.astype(np.float32)

    if warmth:
        # gentle high-frequency rolloff
        b, a = lowpass_coefficients(3000.0 + f * 2.0, 0.7, sample_rate)
        y = lfilter(b, a, y)

    y = y * envelope(y.size, sample_rate, duration, env) * volume
    return y.astype(np.float32)


def synthesize_request(
    req: PluckRequest,
    *,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    return synthesize_pluck(req.frequency, req.duration, req.volume, req.params, sample_rate=sample_rate, rng=rng)


__all__ = [
    "DEFAULT_SAMPLE_RATE",
    "EnvelopeParams",
    "KarplusStrongParams",
    "PluckRequest",
    "clamp_frequency",
    "delay_length",
    "envelope",
    "excitation",
    "karplus_strong",
    "randomized_params",
    "synthesize_pluck",
    "synthesize_request",
]
