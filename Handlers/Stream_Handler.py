"""Stream Handler - named viewer sinks backed by bounded queues.

Implements the ViewerSink protocol. A worker pushes frames without ever
blocking: if the viewer is behind, the new frame is dropped (natural
backpressure). Frames are copied on push because workers reuse their
buffers on the next cycle.
"""
import threading
from queue import Queue, Empty, Full
from typing import Dict, Optional

import numpy as np

from utils.constants import STREAM_QUEUE_SIZE
from utils.logger import Logger


class FrameStream:
    """One named output stream (e.g. ``front.crosshair``)."""

    def __init__(self, name: str, maxsize: int = STREAM_QUEUE_SIZE):
        self.name = name
        self.queue: Queue = Queue(maxsize=maxsize)
        self.logger = Logger(f"Stream[{name}]")
        self._lock = threading.Lock()
        self.last_error: Optional[str] = None
        self.error_count = 0
        self.frames_pushed = 0
        self.frames_dropped = 0

    # ── ViewerSink protocol ───────────────────────────────────────────

    def push_frame(self, frame: np.ndarray) -> None:
        with self._lock:
            self.last_error = None
        try:
            self.queue.put_nowait(frame.copy())
            with self._lock:
                self.frames_pushed += 1
        except Full:
            with self._lock:
                self.frames_dropped += 1

    def notify_error(self, message: str) -> None:
        with self._lock:
            if message != self.last_error:
                self.logger.warning(f"Source error: {message}")
            self.last_error = message
            self.error_count += 1

    # ── Viewer side ──────────────────────────────────────────────────

    def latest(self) -> Optional[np.ndarray]:
        """Drain the queue and return only the newest frame (or None)."""
        latest = None
        while True:
            try:
                latest = self.queue.get_nowait()
            except Empty:
                break
        return latest

    def status(self) -> Dict[str, object]:
        with self._lock:
            return {
                "name": self.name,
                "pushed": self.frames_pushed,
                "dropped": self.frames_dropped,
                "errors": self.error_count,
                "last_error": self.last_error,
            }
