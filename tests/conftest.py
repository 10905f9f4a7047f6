from __future__ import annotations

from typing import Callable, Dict, Optional

import numpy as np
import pytest

SR = 44100


def sine(freq: float, n: int = 4096, sr: int = SR, amp: float = 0.5, phase: float = 0.3) -> np.ndarray:
    t = np.arange(n) / float(sr)
    return (amp * np.sin(2 * np.pi * freq * t + phase)).astype(np.float32)


class FakeCapture:
    """Capture source returning a fixed frame."""

    def __init__(self, frame: Optional[np.ndarray] = None, sample_rate: int = SR, error: Optional[Exception] = None):
        self.frame = np.zeros(4096, dtype=np.float32) if frame is None else frame
        self.sample_rate = sample_rate
        self.error = error
        self.started = False
        self.stop_calls = 0
        self.read_error: Optional[Exception] = None

    def start(self) -> None:
        if self.error is not None:
            raise self.error
        self.started = True

    def stop(self) -> None:
        self.stop_calls += 1
        self.started = False

    def read_frame(self, n: int) -> np.ndarray:
        if self.read_error is not None:
            raise self.read_error
        return self.frame[:n]


class ManualScheduler:
    """Frame scheduler that only runs callbacks when told to."""

    def __init__(self):
        self.pending: Dict[int, Callable[[], None]] = {}
        self._next = 0
        self.cancelled = []

    def request(self, callback: Callable[[], None]) -> int:
        self._next += 1
        self.pending[self._next] = callback
        return self._next

    def cancel(self, handle: int) -> None:
        self.cancelled.append(handle)
        self.pending.pop(handle, None)

    def run_pending(self) -> int:
        items = list(self.pending.items())
        self.pending.clear()
        for _, cb in items:
            cb()
        return len(items)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()
