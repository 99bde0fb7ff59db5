"""Video Input Handler - Reads frames from a video file for bench testing.

Implements the FrameSource protocol, same interface as CameraHandler.
Used when the --video flag is passed to the node. Playback is paced to
the source's configured frame rate and loops at end of file.
"""
import time
from pathlib import Path
from typing import Optional, Tuple

import cv2
import numpy as np

from utils.logger import Logger


class VideoInputHandler:
    """Handles video file input for testing purposes.

    Implements the FrameSource protocol:
        start() -> bool
        grab_frame(buffer) -> (frame, ok)
        get_error() -> str
        stop() -> None
    """

    def __init__(self, video_path: str, fps: float = 30.0, loop: bool = True):
        """
        Args:
            video_path: Path to the video file.
            fps: Playback rate; 0 disables pacing.
            loop: Restart from the first frame at end of file.
        """
        self.video_path = video_path
        self.fps = fps
        self.loop = loop
        self.logger = Logger("VideoInputHandler")
        self.cap: Optional[cv2.VideoCapture] = None
        self._error = ""
        self._last_grab = 0.0

    # ── FrameSource protocol ──────────────────────────────────────────

    def start(self) -> bool:
        """Open the video file for reading."""
        if not Path(self.video_path).exists():
            self._error = f"video file not found: {self.video_path}"
            self.logger.error(self._error)
            return False

        self.cap = cv2.VideoCapture(self.video_path)
        if not self.cap.isOpened():
            self._error = f"failed to open video file: {self.video_path}"
            self.logger.error(self._error)
            self.cap = None
            return False

        self.logger.info(f"Video file opened: {self.video_path}")
        return True

    def grab_frame(self, buffer: Optional[np.ndarray] = None) -> Tuple[Optional[np.ndarray], bool]:
        """Read the next frame, rewinding once at end of file when looping."""
        if self.cap is None:
            self._error = "video source is not open"
            return None, False

        self._pace()
        ok, frame = self._read(buffer)
        if not ok and self.loop:
            self.logger.info("Video ended - looping back to start")
            self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            ok, frame = self._read(buffer)

        if not ok or frame is None:
            self._error = "end of video" if not self.loop else "video read failed"
            return None, False
        return frame, True

    def get_error(self) -> str:
        return self._error

    def stop(self) -> None:
        """Release the video capture resources."""
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.logger.info("Video capture released")

    # ── Internal ─────────────────────────────────────────────────────

    def _read(self, buffer: Optional[np.ndarray]):
        return self.cap.read(buffer) if buffer is not None else self.cap.read()

    def _pace(self) -> None:
        if self.fps <= 0:
            return
        sleep_time = (1.0 / self.fps) - (time.monotonic() - self._last_grab)
        if sleep_time > 0:
            time.sleep(sleep_time)
        self._last_grab = time.monotonic()
