# lyre/live/audio_stream.py
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Optional

import numpy as np

try:
    import sounddevice as sd
except Exception as e:
    sd = None
    _sd_import_error = e

logger = logging.getLogger(__name__)


@dataclass
class AudioStreamConfig:
    sample_rate: int = 44100
    channels: int = 1
    dtype: str = "float32"
    buffer_seconds: float = 2.0
    device: Optional[int] = None


class CaptureFailure(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    DEVICE_NOT_FOUND = "device_not_found"
    OTHER = "other"


FAILURE_MESSAGES = {
    CaptureFailure.PERMISSION_DENIED: (
        "Microphone access was denied. Please allow microphone access to use the tuner."
    ),
    CaptureFailure.DEVICE_NOT_FOUND: (
        "No microphone found. Please connect a microphone to use the tuner."
    ),
}


class CaptureError(RuntimeError):
    failure = CaptureFailure.OTHER


class CapturePermissionError(CaptureError):
    failure = CaptureFailure.PERMISSION_DENIED


class CaptureDeviceNotFoundError(CaptureError):
    failure = CaptureFailure.DEVICE_NOT_FOUND


# PortAudio error texts (and host codes) seen for the two classified cases
_PERMISSION_TOKENS = ("permission", "not allowed", "access denied", "notallowed", "-9986")
_NOT_FOUND_TOKENS = (
    "no input device",
    "invalid device",
    "device unavailable",
    "error querying device -1",
    "no default input",
    "-9996",
    "-9985",
)


def classify_capture_error(exc: BaseException) -> CaptureFailure:
    if isinstance(exc, CaptureError):
        return exc.failure
    if isinstance(exc, PermissionError):
        return CaptureFailure.PERMISSION_DENIED

    text = str(exc).lower()
    if any(t in text for t in _PERMISSION_TOKENS):
        return CaptureFailure.PERMISSION_DENIED
    if any(t in text for t in _NOT_FOUND_TOKENS):
        return CaptureFailure.DEVICE_NOT_FOUND
    return CaptureFailure.OTHER


def failure_message(failure: CaptureFailure, exc: Optional[BaseException] = None) -> str:
    msg = FAILURE_MESSAGES.get(failure)
    if msg is not None:
        return msg
    return f"Microphone error: {exc}" if exc is not None else "Microphone error"


class RingBufferAudio:
    """
    Thread-safe ring buffer storing recent audio chunks. Holds at least
    max_seconds of audio once that much has been captured.
    """
    def __init__(self, sample_rate: int, max_seconds: float):
        self.sample_rate = int(sample_rate)
        self.max_samples = int(self.sample_rate * max_seconds)

        self._buf: Deque[np.ndarray] = deque()
        self._buf_samples = 0
        self._lock = threading.Lock()

    def push(self, chunk: np.ndarray) -> None:
        if chunk.ndim != 1:
            chunk = chunk.reshape(-1)
        chunk = chunk.astype(np.float32, copy=True)

        with self._lock:
            self._buf.append(chunk)
            self._buf_samples += chunk.shape[0]

            while len(self._buf) > 1 and self._buf_samples - self._buf[0].shape[0] >= self.max_samples:
                old = self._buf.popleft()
                self._buf_samples -= old.shape[0]

    def get_last_samples(self, count: int) -> np.ndarray:
        """
        Most recent `count` samples. Zero-padded at the front until that
        much audio has been captured, so frames always have a fixed size.
        """
        count = int(count)
        out = np.zeros((count,), dtype=np.float32)
        with self._lock:
            remaining = min(count, self._buf_samples)
            end = count
            for arr in reversed(self._buf):
                if remaining <= 0:
                    break
                take = min(arr.shape[0], remaining)
                out[end - take:end] = arr[-take:]
                end -= take
                remaining -= take
        return out


class LiveAudioInput:
    """
    Continuous mic capture -> ring buffer.
    Uses the device default samplerate.
    """
    def __init__(self, cfg: Optional[AudioStreamConfig] = None):
        self.cfg = cfg or AudioStreamConfig()
        self.ring = RingBufferAudio(self.cfg.sample_rate, self.cfg.buffer_seconds)
        self._stream = None
        self._running = False

    @property
    def sample_rate(self) -> int:
        return int(self.cfg.sample_rate)

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if sd is None:
            raise CaptureError(f"sounddevice import failed: {_sd_import_error!r}")
        if self._running:
            return

        device = self.cfg.device
        try:
            info = sd.query_devices(device, "input")
        except ValueError as e:
            raise CaptureDeviceNotFoundError(str(e)) from e
        except sd.PortAudioError as e:
            if classify_capture_error(e) is CaptureFailure.PERMISSION_DENIED:
                raise CapturePermissionError(str(e)) from e
            raise CaptureDeviceNotFoundError(str(e)) from e

        dev_sr = int(round(float(info.get("default_samplerate", self.cfg.sample_rate))))
        self.cfg.sample_rate = dev_sr
        self.ring = RingBufferAudio(self.cfg.sample_rate, self.cfg.buffer_seconds)

        def callback(indata, frames, time_info, status):
            if status:
                logger.debug("input stream status: %s", status)
            x = indata
            if x.ndim == 2 and x.shape[1] > 1:
                x = np.mean(x, axis=1)
            else:
                x = x.reshape(-1)
            self.ring.push(x)

        try:
            self._stream = sd.InputStream(
                samplerate=self.cfg.sample_rate,
                channels=self.cfg.channels,
                dtype=self.cfg.dtype,
                callback=callback,
                device=device,
                blocksize=0,
            )
            self._stream.start()
        except Exception as e:
            self._stream = None
            failure = classify_capture_error(e)
            if failure is CaptureFailure.PERMISSION_DENIED:
                raise CapturePermissionError(str(e)) from e
            if failure is CaptureFailure.DEVICE_NOT_FOUND:
                raise CaptureDeviceNotFoundError(str(e)) from e
            raise CaptureError(str(e)) from e

        self._running = True
        logger.info("capture started device=%s sample_rate=%d", device, self.cfg.sample_rate)

    def read_frame(self, frame_size: int) -> np.ndarray:
        return self.ring.get_last_samples(frame_size)

    def stop(self) -> None:
        if not self._running:
            return
        try:
            if self._stream is not None:
                self._stream.stop()
                self._stream.close()
        finally:
            self._stream = None
            self._running = False
            logger.info("capture stopped")


__all__ = [
    "AudioStreamConfig",
    "CaptureDeviceNotFoundError",
    "CaptureError",
    "CaptureFailure",
    "CapturePermissionError",
    "LiveAudioInput",
    "RingBufferAudio",
    "classify_capture_error",
    "failure_message",
]
