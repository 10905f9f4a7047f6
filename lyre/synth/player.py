from __future__ import annotations

import logging
import math
import os
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
import soundfile as sf

from lyre.models.string_event import StringEvent, string_events
from lyre.synth.karplus_strong import DEFAULT_SAMPLE_RATE, randomized_params, synthesize_pluck
from lyre.theory.tuning import Tuning

try:
    import sounddevice as sd
except Exception as e:
    sd = None
    _sd_import_error = e

logger = logging.getLogger(__name__)

PLUCK_DURATION_S = 2.2
PLUCK_VOLUME = 0.35


class StrumDirection(str, Enum):
    DOWN = "down"   # low string to high
    UP = "up"       # high string to low


@dataclass
class StrumConfig:
    inter_onset_ms: float = 50.0
    duration_s: float = 2.5
    volume: float = 0.22


def strum_schedule(
    events: Sequence[StringEvent],
    inter_onset_ms: float = 50.0,
    direction: Union[StrumDirection, str] = StrumDirection.DOWN,
) -> List[Tuple[float, StringEvent]]:
    """
    (onset seconds, event) for each open string. Onsets follow each string's
    slot in strum order, so muted strings leave a gap.
    """
    ordered = list(events)
    if StrumDirection(direction) is StrumDirection.UP:
        ordered.reverse()

    step = float(inter_onset_ms) / 1000.0
    return [(i * step, ev) for i, ev in enumerate(ordered) if ev.is_open]


def render_strum(
    events: Sequence[StringEvent],
    inter_onset_ms: float = 50.0,
    direction: Union[StrumDirection, str] = StrumDirection.DOWN,
    *,
    cfg: Optional[StrumConfig] = None,
    sample_rate: int = DEFAULT_SAMPLE_RATE,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Mix a whole strum offline into one float32 buffer. Overlapping voices may sum past 1.0."""
    cfg = cfg or StrumConfig()
    rng = rng or np.random.default_rng()

    schedule = strum_schedule(events, inter_onset_ms, direction)
    if not schedule:
        return np.zeros((0,), dtype=np.float32)

    voice_len = int(math.ceil(sample_rate * cfg.duration_s))
    starts = [int(round(onset * sample_rate)) for onset, _ in schedule]
    y = np.zeros((max(starts) + voice_len,), dtype=np.float32)

    for start, (_, ev) in zip(starts, schedule):
        wave = synthesize_pluck(
            ev.frequency,
            cfg.duration_s,
            cfg.volume,
            randomized_params(rng),
            sample_rate=sample_rate,
            rng=rng,
        )
        y[start:start + wave.shape[0]] += wave

    return y


def strum_to_wav_path(
    events: Iterable[StringEvent],
    inter_onset_ms: float = 50.0,
    direction: Union[StrumDirection, str] = StrumDirection.DOWN,
    *,
    sr: int = DEFAULT_SAMPLE_RATE,
    gain: float = 0.35,
    rng: Optional[np.random.Generator] = None,
) -> Optional[str]:
    y = render_strum(list(events), inter_onset_ms, direction, sample_rate=sr, rng=rng)
    if y.size == 0:
        return None

    # normalize
    peak = float(np.max(np.abs(y)))
    if peak > 1e-9:
        y = (float(gain) / peak) * y
    y = np.clip(y, -1.0, 1.0).astype(np.float32, copy=False)

    fd, path = tempfile.mkstemp(suffix=".wav")
    os.close(fd)
    sf.write(path, y, sr)
    return path


class AudioOutput:
    """
    Voice mixer on a sounddevice output stream.

    Each scheduled voice is an immutable buffer plus a start frame on the
    stream's sample clock; the mixer only reads them, so overlapping voices
    never share synthesis state.
    """
    def __init__(self, sample_rate: int = DEFAULT_SAMPLE_RATE, device: Optional[int] = None):
        self.sample_rate = int(sample_rate)
        self.device = device
        self._voices: List[Tuple[int, np.ndarray]] = []
        self._frame = 0
        self._lock = threading.Lock()
        self._stream = None

    @property
    def running(self) -> bool:
        return self._stream is not None

    @property
    def active_voices(self) -> int:
        with self._lock:
            return len(self._voices)

    def start(self) -> None:
        if sd is None:
            raise RuntimeError(f"sounddevice import failed: {_sd_import_error!r}")
        if self._stream is not None:
            return

        def callback(outdata, frames, time_info, status):
            if status:
                logger.debug("output stream status: %s", status)
            outdata[:, 0] = self.render(frames)

        self._stream = sd.OutputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="float32",
            callback=callback,
            device=self.device,
            blocksize=0,
        )
        self._stream.start()
        logger.info("audio output started sample_rate=%d", self.sample_rate)

    def stop(self) -> None:
        stream, self._stream = self._stream, None
        try:
            if stream is not None:
                stream.stop()
                stream.close()
        finally:
            with self._lock:
                self._voices.clear()

    def schedule(self, samples: np.ndarray, delay_s: float = 0.0) -> None:
        buf = np.asarray(samples, dtype=np.float32).reshape(-1)
        if buf.size == 0:
            return
        with self._lock:
            start = self._frame + max(0, int(round(float(delay_s) * self.sample_rate)))
            self._voices.append((start, buf))

    def render(self, frames: int) -> np.ndarray:
        """Mix the next `frames` samples and advance the clock."""
        out = np.zeros((int(frames),), dtype=np.float32)
        with self._lock:
            block_start = self._frame
            block_end = block_start + out.shape[0]
            keep: List[Tuple[int, np.ndarray]] = []
            for start, buf in self._voices:
                dst = max(0, start - block_start)
                src = max(0, block_start - start)
                count = min(out.shape[0] - dst, buf.shape[0] - src)
                if count > 0:
                    out[dst:dst + count] += buf[src:src + count]
                if start + buf.shape[0] > block_end:
                    keep.append((start, buf))
            self._voices = keep
            self._frame = block_end
        return np.clip(out, -1.0, 1.0)


class LyrePlayer:
    """Plucks and strums played through an AudioOutput."""

    def __init__(
        self,
        output: Optional[AudioOutput] = None,
        *,
        strum: Optional[StrumConfig] = None,
        seed: Optional[int] = None,
    ):
        self.output = output or AudioOutput()
        self.strum_cfg = strum or StrumConfig()
        self._seeds = np.random.SeedSequence(seed)
        self._seed_lock = threading.Lock()

    def _voice_rng(self) -> np.random.Generator:
        with self._seed_lock:
            child = self._seeds.spawn(1)[0]
        return np.random.default_rng(child)

    def _ensure_output(self) -> None:
        if not self.output.running:
            self.output.start()

    def _voice(self, frequency: float, duration: float, volume: float) -> np.ndarray:
        rng = self._voice_rng()
        return synthesize_pluck(
            frequency,
            duration,
            volume,
            randomized_params(rng),
            sample_rate=self.output.sample_rate,
            rng=rng,
        )

    def pluck_string(self, frequency: float) -> np.ndarray:
        """Single string or reference tone."""
        self._ensure_output()
        wave = self._voice(frequency, PLUCK_DURATION_S, PLUCK_VOLUME)
        self.output.schedule(wave)
        return wave

    def strum_chord(
        self,
        events: Sequence[StringEvent],
        inter_onset_ms: Optional[float] = None,
        direction: Union[StrumDirection, str] = StrumDirection.DOWN,
    ) -> int:
        """Schedule one voice per open string; returns the number of voices."""
        self._ensure_output()
        delay = self.strum_cfg.inter_onset_ms if inter_onset_ms is None else inter_onset_ms
        schedule = strum_schedule(events, delay, direction)
        for onset, ev in schedule:
            wave = self._voice(ev.frequency, self.strum_cfg.duration_s, self.strum_cfg.volume)
            self.output.schedule(wave, delay_s=onset)
        return len(schedule)

    def strum_tuning(
        self,
        tuning: Tuning,
        states: Sequence[int],
        direction: Union[StrumDirection, str] = StrumDirection.DOWN,
    ) -> int:
        return self.strum_chord(string_events(tuning.strings, states), direction=direction)

    def close(self) -> None:
        self.output.stop()


__all__ = [
    "AudioOutput",
    "LyrePlayer",
    "StrumConfig",
    "StrumDirection",
    "render_strum",
    "strum_schedule",
    "strum_to_wav_path",
]
