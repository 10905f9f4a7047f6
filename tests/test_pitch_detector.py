import threading
import time

import numpy as np
import pytest
from conftest import FakeCapture, sine

from lyre.live.audio_stream import FAILURE_MESSAGES, CaptureFailure, CapturePermissionError
from lyre.live.pitch_detector import (
    DetectorConfig,
    DetectorState,
    DetectorStateError,
    FrameScheduler,
    PitchDetector,
)
from lyre.models.detected_pitch import PitchEventKind


class Recorder:
    def __init__(self):
        self.pitches = []
        self.errors = []
        self.states = []

    def kwargs(self):
        return dict(
            on_pitch=self.pitches.append,
            on_error=self.errors.append,
            on_state_change=self.states.append,
        )


def make_detector(scheduler, capture, rec=None, **kw):
    rec = rec or Recorder()
    det = PitchDetector(capture_factory=lambda cfg: capture, scheduler=scheduler, **rec.kwargs(), **kw)
    return det, rec


def test_starts_idle(scheduler):
    det, rec = make_detector(scheduler, FakeCapture())
    assert det.state is DetectorState.IDLE
    assert not det.is_listening
    assert rec.states == []


def test_start_transitions_to_listening(scheduler):
    capture = FakeCapture()
    det, rec = make_detector(scheduler, capture)
    assert det.start() is True
    assert rec.states == [DetectorState.REQUESTING, DetectorState.LISTENING]
    assert det.is_listening
    assert capture.started
    assert len(scheduler.pending) == 1


def test_each_tick_emits_one_pitch_and_requests_next(scheduler):
    det, rec = make_detector(scheduler, FakeCapture(sine(440.0)))
    det.start()

    for _ in range(3):
        assert scheduler.run_pending() == 1

    assert len(rec.pitches) == 3
    assert all(p.kind is PitchEventKind.PITCH for p in rec.pitches)
    assert rec.pitches[0].note == "A"
    assert len(scheduler.pending) == 1


def test_quiet_input_reports_silence(scheduler):
    det, rec = make_detector(scheduler, FakeCapture(np.zeros(4096, dtype=np.float32)))
    det.start()
    scheduler.run_pending()
    assert rec.pitches[0].kind is PitchEventKind.SILENCE


def test_stop_releases_and_cancels(scheduler):
    capture = FakeCapture(sine(440.0))
    det, rec = make_detector(scheduler, capture)
    det.start()
    det.stop()

    assert det.state is DetectorState.STOPPED
    assert capture.stop_calls == 1
    assert scheduler.pending == {}
    assert scheduler.cancelled


def test_stop_is_idempotent(scheduler):
    capture = FakeCapture()
    det, rec = make_detector(scheduler, capture)
    det.start()
    det.stop()
    det.stop()
    assert capture.stop_calls == 1
    assert rec.states.count(DetectorState.STOPPED) == 1


def test_stop_before_start(scheduler):
    det, rec = make_detector(scheduler, FakeCapture())
    det.stop()
    assert det.state is DetectorState.STOPPED


def test_no_pitch_after_stop(scheduler):
    det, rec = make_detector(scheduler, FakeCapture(sine(440.0)))
    det.start()
    stale = list(scheduler.pending.values())
    det.stop()
    for cb in stale:
        cb()
    assert rec.pitches == []


def test_stop_from_pitch_callback(scheduler):
    holder = {}

    def on_pitch(p):
        holder["pitches"] = holder.get("pitches", 0) + 1
        holder["det"].stop()

    det = PitchDetector(capture_factory=lambda cfg: FakeCapture(sine(440.0)), scheduler=scheduler, on_pitch=on_pitch)
    holder["det"] = det
    det.start()
    scheduler.run_pending()

    assert det.state is DetectorState.STOPPED
    assert holder["pitches"] == 1
    assert scheduler.pending == {}


def test_double_start_rejected(scheduler):
    det, rec = make_detector(scheduler, FakeCapture())
    det.start()
    with pytest.raises(DetectorStateError):
        det.start()
    assert det.is_listening


@pytest.mark.parametrize(
    "error, failure",
    [
        (PermissionError("denied"), CaptureFailure.PERMISSION_DENIED),
        (CapturePermissionError("blocked"), CaptureFailure.PERMISSION_DENIED),
        (RuntimeError("Error querying device -1"), CaptureFailure.DEVICE_NOT_FOUND),
        (RuntimeError("No input device found"), CaptureFailure.DEVICE_NOT_FOUND),
    ],
)
def test_start_failure_classified(scheduler, error, failure):
    capture = FakeCapture(error=error)
    det, rec = make_detector(scheduler, capture)

    assert det.start() is False
    assert det.state is DetectorState.ERROR
    assert rec.states == [DetectorState.REQUESTING, DetectorState.ERROR]
    assert len(rec.errors) == 1
    assert rec.errors[0].failure is failure
    assert rec.errors[0].message == FAILURE_MESSAGES[failure]
    assert det.last_error == rec.errors[0]
    assert scheduler.pending == {}


def test_unclassified_failure_keeps_error_text(scheduler):
    det, rec = make_detector(scheduler, FakeCapture(error=RuntimeError("boom")))
    det.start()
    assert rec.errors[0].failure is CaptureFailure.OTHER
    assert rec.errors[0].message == "Microphone error: boom"


def test_factory_failure_is_reported(scheduler):
    def factory(cfg):
        raise OSError("PortAudio not initialized")

    rec = Recorder()
    det = PitchDetector(capture_factory=factory, scheduler=scheduler, **rec.kwargs())
    assert det.start() is False
    assert rec.errors[0].failure is CaptureFailure.OTHER


def test_restart_after_error(scheduler):
    captures = [FakeCapture(error=PermissionError("denied")), FakeCapture(sine(440.0))]
    rec = Recorder()
    det = PitchDetector(capture_factory=lambda cfg: captures.pop(0), scheduler=scheduler, **rec.kwargs())

    assert det.start() is False
    assert det.start() is True
    assert det.is_listening
    assert det.last_error is None
    scheduler.run_pending()
    assert len(rec.pitches) == 1


def test_restart_after_stop_opens_new_capture(scheduler):
    opened = []

    def factory(cfg):
        opened.append(FakeCapture())
        return opened[-1]

    det = PitchDetector(capture_factory=factory, scheduler=scheduler)
    det.start()
    det.stop()
    det.start()
    assert len(opened) == 2
    assert opened[0].stop_calls == 1
    assert opened[1].started


def test_read_failure_moves_to_error(scheduler):
    capture = FakeCapture(sine(440.0))
    det, rec = make_detector(scheduler, capture)
    det.start()
    capture.read_error = RuntimeError("Input overflowed")
    scheduler.run_pending()

    assert det.state is DetectorState.ERROR
    assert rec.errors[0].failure is CaptureFailure.OTHER
    assert capture.stop_calls == 1
    assert scheduler.pending == {}


def test_stop_during_request(scheduler):
    capture = FakeCapture()
    holder = {}

    def on_state(state):
        if state is DetectorState.REQUESTING:
            holder["det"].stop()

    det = PitchDetector(capture_factory=lambda cfg: capture, scheduler=scheduler, on_state_change=on_state)
    holder["det"] = det
    assert det.start() is False
    assert det.state is DetectorState.STOPPED
    assert capture.stop_calls == 1
    assert scheduler.pending == {}


def test_config_passed_to_factory(scheduler):
    seen = []
    cfg = DetectorConfig(frame_size=2048, device=3)

    def factory(c):
        seen.append(c)
        return FakeCapture(sine(440.0))

    det = PitchDetector(cfg, capture_factory=factory, scheduler=scheduler)
    det.start()
    assert seen == [cfg]


def test_detect_uses_config_gates():
    det = PitchDetector(DetectorConfig(min_volume=0.5), scheduler=object())
    assert det.detect(sine(440.0, amp=0.5), 44100).kind is PitchEventKind.SILENCE


# ---------- real scheduler ----------

def test_frame_scheduler_runs_callback():
    sched = FrameScheduler(refresh_hz=100.0)
    done = threading.Event()
    sched.request(done.set)
    assert done.wait(2.0)


def test_frame_scheduler_cancel():
    sched = FrameScheduler(refresh_hz=5.0)
    fired = threading.Event()
    handle = sched.request(fired.set)
    sched.cancel(handle)
    assert not fired.wait(0.4)


def test_frame_scheduler_survives_callback_error():
    sched = FrameScheduler(refresh_hz=100.0)
    first = threading.Event()
    second = threading.Event()

    def boom():
        first.set()
        raise RuntimeError("callback failed")

    sched.request(boom)
    assert first.wait(2.0)
    sched.request(second.set)
    assert second.wait(2.0)


def test_detector_with_real_scheduler():
    got = threading.Event()
    pitches = []

    def on_pitch(p):
        pitches.append(p)
        if len(pitches) >= 3:
            got.set()

    det = PitchDetector(
        DetectorConfig(refresh_hz=200.0),
        capture_factory=lambda cfg: FakeCapture(sine(440.0)),
        on_pitch=on_pitch,
    )
    det.start()
    try:
        assert got.wait(5.0)
    finally:
        det.stop()

    count = len(pitches)
    time.sleep(0.05)
    assert len(pitches) == count
    assert det.state is DetectorState.STOPPED
