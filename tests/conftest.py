import threading
from typing import List, Optional, Tuple

import numpy as np
import pytest

from core.bus import EventBus

# BGR colours inside the built-in pipelines' ranges
HATCH_BGR = (40, 147, 200)   # HSV ~ (20, 204, 200)
CARGO_BGR = (30, 140, 255)   # HLS ~ (15, 142, 255)


def make_frame(width=320, height=240, rect=None, color=(0, 0, 0)):
    """Black BGR frame with an optional filled rectangle (x0, y0, x1, y1), end exclusive."""
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    if rect is not None:
        x0, y0, x1, y1 = rect
        frame[y0:y1, x0:x1] = color
    return frame


class FakeSource:
    """Scripted FrameSource: plays back a list of frames (None = capture fault)."""

    def __init__(self, frames: List[Optional[np.ndarray]], start_ok: bool = True,
                 error: str = "camera unplugged", start_failures: int = 0):
        self.frames = list(frames)
        self.start_ok = start_ok
        self.start_failures = start_failures
        self.starts = 0
        self.error = error
        self.started = False
        self.stopped = False
        self.grabs = 0

    def start(self) -> bool:
        self.started = True
        self.starts += 1
        return self.start_ok and self.starts > self.start_failures

    def grab_frame(self, buffer=None) -> Tuple[Optional[np.ndarray], bool]:
        self.grabs += 1
        frame = self.frames[(self.grabs - 1) % len(self.frames)] if self.frames else None
        if frame is None:
            return None, False
        if buffer is not None and buffer.shape == frame.shape:
            buffer[...] = frame
            return buffer, True
        return frame.copy(), True

    def get_error(self) -> str:
        return self.error

    def stop(self) -> None:
        self.stopped = True


class RecordingSink:
    """ViewerSink that keeps copies of everything it receives."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.frames: List[np.ndarray] = []
        self.errors: List[str] = []

    def push_frame(self, frame: np.ndarray) -> None:
        if self.fail:
            raise RuntimeError("stream closed")
        self.frames.append(frame.copy())

    def notify_error(self, message: str) -> None:
        self.errors.append(message)


class RecordingTelemetry:
    """TelemetryStore that records every publish call."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[Tuple[str, str, float]] = []
        self._lock = threading.Lock()

    def publish(self, namespace: str, field: str, value: float) -> None:
        if self.fail:
            raise ConnectionError("dashboard unreachable")
        with self._lock:
            self.calls.append((namespace, field, value))

    def fields(self, namespace: str) -> dict:
        return {f: v for ns, f, v in self.calls if ns == namespace}


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def telemetry():
    return RecordingTelemetry()
