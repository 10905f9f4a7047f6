"""
Microphone pitch detector.

Lifecycle: IDLE -> REQUESTING -> LISTENING -> STOPPED | ERROR. STOPPED and
ERROR can both start again. While listening, one detection pass runs per
display-refresh tick (60 Hz by default) on the frame scheduler's thread.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Tuple

import numpy as np

from lyre.audio.autocorrelation import FALLBACK_CORRELATION, GOOD_CORRELATION, estimate_pitch
from lyre.live.audio_stream import (
    AudioStreamConfig,
    CaptureFailure,
    LiveAudioInput,
    classify_capture_error,
    failure_message,
)
from lyre.models.detected_pitch import DetectedPitch
from lyre.theory.notes import MAX_NOTE_HZ, MIN_NOTE_HZ

logger = logging.getLogger(__name__)


class DetectorState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    LISTENING = "listening"
    STOPPED = "stopped"
    ERROR = "error"


class DetectorStateError(RuntimeError):
    pass


@dataclass
class DetectorConfig:
    frame_size: int = 4096
    min_volume: float = 0.002      # RMS gate
    min_confidence: float = 0.6    # correlation gate
    refresh_hz: float = 60.0
    min_hz: float = MIN_NOTE_HZ
    max_hz: float = MAX_NOTE_HZ
    good_correlation: float = GOOD_CORRELATION
    fallback_correlation: float = FALLBACK_CORRELATION
    device: Optional[int] = None   # sounddevice input index; None = default


@dataclass(frozen=True)
class CaptureErrorEvent:
    failure: CaptureFailure
    message: str


class FrameScheduler:
    """
    Runs one pending callback per refresh tick on a single daemon thread,
    in the manner of requestAnimationFrame: request() queues the next frame,
    cancel() drops it if it has not started.
    """
    def __init__(self, refresh_hz: float = 60.0):
        self.interval = 1.0 / float(refresh_hz)
        self._cond = threading.Condition()
        self._pending: Optional[Tuple[int, float, Callable[[], None]]] = None
        self._next_handle = 0
        self._thread: Optional[threading.Thread] = None

    def request(self, callback: Callable[[], None]) -> int:
        with self._cond:
            self._next_handle += 1
            self._pending = (self._next_handle, time.monotonic() + self.interval, callback)
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name="lyre-frame-scheduler", daemon=True)
                self._thread.start()
            self._cond.notify()
            return self._next_handle

    def cancel(self, handle: int) -> None:
        with self._cond:
            if self._pending is not None and self._pending[0] == handle:
                self._pending = None
                self._cond.notify()

    def _run(self) -> None:
        while True:
            with self._cond:
                if self._pending is None:
                    self._cond.wait(timeout=1.0)
                    if self._pending is None:
                        # idle; a later request() starts a fresh thread
                        self._thread = None
                        return
                    continue
                _, due, callback = self._pending
                delay = due - time.monotonic()
                if delay > 0:
                    self._cond.wait(timeout=delay)
                    continue
                self._pending = None
            try:
                callback()
            except Exception:
                logger.exception("frame callback failed")


CaptureFactory = Callable[[DetectorConfig], Any]


def _default_capture(cfg: DetectorConfig) -> LiveAudioInput:
    return LiveAudioInput(AudioStreamConfig(device=cfg.device))


class PitchDetector:
    """
    Capture-device state machine with an event channel.

    Callbacks (all optional, keyword-only):
      on_pitch(DetectedPitch)        once per detection pass
      on_error(CaptureErrorEvent)    classified capture/detection failure
      on_state_change(DetectorState) every transition

    The capture source needs start(), stop(), read_frame(n) and sample_rate.
    """
    def __init__(
        self,
        cfg: Optional[DetectorConfig] = None,
        *,
        on_pitch: Optional[Callable[[DetectedPitch], None]] = None,
        on_error: Optional[Callable[[CaptureErrorEvent], None]] = None,
        on_state_change: Optional[Callable[[DetectorState], None]] = None,
        capture_factory: Optional[CaptureFactory] = None,
        scheduler: Optional[Any] = None,
    ):
        self.cfg = cfg or DetectorConfig()
        self.on_pitch = on_pitch or (lambda p: None)
        self.on_error = on_error or (lambda e: None)
        self.on_state_change = on_state_change or (lambda s: None)

        self._capture_factory = capture_factory or _default_capture
        self._scheduler = scheduler or FrameScheduler(self.cfg.refresh_hz)

        self._lock = threading.RLock()
        self._state = DetectorState.IDLE
        self._capture = None
        self._frame_handle: Optional[int] = None
        self.last_error: Optional[CaptureErrorEvent] = None

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def is_listening(self) -> bool:
        return self._state is DetectorState.LISTENING

    def _set_state(self, state: DetectorState) -> None:
        if state is self._state:
            return
        logger.info("pitch detector %s -> %s", self._state.value, state.value)
        self._state = state
        self.on_state_change(state)

    # ---------- lifecycle ----------

    def start(self) -> bool:
        """
        Open the capture device and begin detection.

        Returns False (state ERROR, on_error called) when the device cannot be
        opened. Raises DetectorStateError if already started.
        """
        with self._lock:
            if self._state in (DetectorState.REQUESTING, DetectorState.LISTENING):
                raise DetectorStateError(f"detector is {self._state.value}; call stop() first")

            self.last_error = None
            self._set_state(DetectorState.REQUESTING)

            capture = None
            try:
                capture = self._capture_factory(self.cfg)
                capture.start()
            except Exception as e:
                self._fail(e, capture)
                return False

            if self._state is not DetectorState.REQUESTING:
                # stop() was called from a state-change callback meanwhile
                capture.stop()
                return False

            self._capture = capture
            self._set_state(DetectorState.LISTENING)
            self._frame_handle = self._scheduler.request(self._tick)
            return True

    def stop(self) -> None:
        """
        Cancel the pending frame, release the device and go to STOPPED.
        No on_pitch call happens after this returns. Safe to call repeatedly.
        """
        with self._lock:
            if self._state is DetectorState.STOPPED:
                return
            self._cancel_frame()
            self._release()
            self._set_state(DetectorState.STOPPED)

    def _cancel_frame(self) -> None:
        if self._frame_handle is not None:
            self._scheduler.cancel(self._frame_handle)
            self._frame_handle = None

    def _release(self) -> None:
        capture, self._capture = self._capture, None
        if capture is not None:
            try:
                capture.stop()
            except Exception:
                logger.exception("error while releasing capture device")

    def _fail(self, exc: BaseException, capture: Any = None) -> None:
        failure = classify_capture_error(exc)
        event = CaptureErrorEvent(failure=failure, message=failure_message(failure, exc))
        logger.warning("pitch detector failed (%s): %s", failure.value, exc)

        self._cancel_frame()
        if capture is not None and capture is not self._capture:
            try:
                capture.stop()
            except Exception:
                logger.exception("error while releasing capture device")
        self._release()

        self.last_error = event
        self._set_state(DetectorState.ERROR)
        self.on_error(event)

    # ---------- detection loop ----------

    def _tick(self) -> None:
        with self._lock:
            if self._state is not DetectorState.LISTENING or self._capture is None:
                return
            self._frame_handle = None

            try:
                frame = np.asarray(self._capture.read_frame(self.cfg.frame_size), dtype=np.float32)
                pitch = self.detect(frame, self._capture.sample_rate)
                self.on_pitch(pitch)
            except Exception as e:
                self._fail(e)
                return

            # on_pitch may have stopped us
            if self._state is DetectorState.LISTENING:
                self._frame_handle = self._scheduler.request(self._tick)

    def detect(self, frame: np.ndarray, sample_rate: float) -> DetectedPitch:
        cfg = self.cfg
        return estimate_pitch(
            frame,
            sample_rate,
            min_volume=cfg.min_volume,
            min_confidence=cfg.min_confidence,
            min_hz=cfg.min_hz,
            max_hz=cfg.max_hz,
            good_correlation=cfg.good_correlation,
            fallback_correlation=cfg.fallback_correlation,
        )


__all__ = [
    "CaptureErrorEvent",
    "DetectorConfig",
    "DetectorState",
    "DetectorStateError",
    "FrameScheduler",
    "PitchDetector",
]
