"""
Camera Handler - USB camera frame source built on cv2.VideoCapture.

Implements the FrameSource protocol. Applies the video mode and image
controls from the camera's config entry, captures straight into the
worker's pooled buffer, and re-opens the device after a run of failed
grabs (USB cameras on a robot get bumped loose).
"""
import time
from typing import Optional, Tuple

import cv2
import numpy as np

from utils.config import SourceConfig
from utils.constants import MAX_CONSECUTIVE_GRAB_FAILURES
from utils.logger import Logger

# V4L2 values for CAP_PROP_AUTO_EXPOSURE
_V4L2_EXPOSURE_MANUAL = 1
_V4L2_EXPOSURE_AUTO = 3

_FOURCC_ALIASES = {"MJPEG": "MJPG"}


class CameraHandler:
    """Handles one USB camera.

    Implements the FrameSource protocol:
        start() -> bool
        grab_frame(buffer) -> (frame, ok)
        get_error() -> str
        stop() -> None
    """

    def __init__(self, config: SourceConfig, max_failures: int = MAX_CONSECUTIVE_GRAB_FAILURES):
        """
        Args:
            config: Frozen source configuration (device path, mode, controls).
            max_failures: Consecutive failed grabs before the device is re-opened.
        """
        self.config = config
        self.max_failures = max_failures
        self.logger = Logger(f"CameraHandler[{config.name}]")
        self.cap: Optional[cv2.VideoCapture] = None
        self._error = ""
        self._consecutive_failures = 0

        # Negotiated mode, filled in by start()
        self.actual_width = 0
        self.actual_height = 0
        self.actual_fps = 0.0
        self.actual_fourcc = ""

    # ── FrameSource protocol ──────────────────────────────────────────

    def start(self) -> bool:
        """Open the device and apply the configured mode."""
        self.logger.info(f"Starting camera '{self.config.name}' on {self.config.path}")
        device = self._device()
        if isinstance(device, str) and device.startswith("/dev/"):
            self.cap = cv2.VideoCapture(device, cv2.CAP_V4L2)
        else:
            self.cap = cv2.VideoCapture(device)

        if not self.cap or not self.cap.isOpened():
            self._error = f"could not open camera '{self.config.name}' at {self.config.path}"
            self.logger.error(self._error)
            self.cap = None
            return False

        self._apply_settings()
        time.sleep(0.1)  # let the driver settle before querying the mode
        self._query_mode()

        if self.actual_width == 0 or self.actual_height == 0:
            self._error = "camera returned zero resolution"
            self.logger.error(self._error)
            self.stop()
            return False

        self._consecutive_failures = 0
        self._error = ""
        return True

    def grab_frame(self, buffer: Optional[np.ndarray] = None) -> Tuple[Optional[np.ndarray], bool]:
        """Read the next frame, into ``buffer`` when its shape matches the mode."""
        if self.cap is None or not self.cap.isOpened():
            self._error = f"camera '{self.config.name}' is not open"
            self._register_failure()
            return None, False

        ok, frame = self.cap.read(buffer) if buffer is not None else self.cap.read()
        if not ok or frame is None:
            self._error = f"camera '{self.config.name}': frame grab failed"
            self._register_failure()
            return None, False

        self._consecutive_failures = 0
        return frame, True

    def get_error(self) -> str:
        return self._error

    def stop(self) -> None:
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.logger.info("Camera released")

    # ── Internal ─────────────────────────────────────────────────────

    def _device(self):
        path = self.config.path
        return int(path) if str(path).isdigit() else path

    def _register_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures == 1:
            self.logger.warning(f"{self._error}, waiting for camera stream...")
        if self._consecutive_failures >= self.max_failures:
            self.logger.warning(
                f"{self.max_failures} consecutive failed grabs. Re-opening camera..."
            )
            self.stop()
            self.start()
            self._consecutive_failures = 0

    def _apply_settings(self) -> None:
        cfg = self.config
        if cfg.pixel_format:
            fourcc = _FOURCC_ALIASES.get(cfg.pixel_format.upper(), cfg.pixel_format.upper())
            self.cap.set(cv2.CAP_PROP_FOURCC, cv2.VideoWriter_fourcc(*fourcc[:4].ljust(4)))
        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, cfg.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, cfg.height)
        self.cap.set(cv2.CAP_PROP_FPS, cfg.fps)

        if cfg.brightness is not None:
            self.cap.set(cv2.CAP_PROP_BRIGHTNESS, float(cfg.brightness))

        if cfg.exposure is not None and str(cfg.exposure).lower() != "hold":
            if str(cfg.exposure).lower() == "auto":
                self.cap.set(cv2.CAP_PROP_AUTO_EXPOSURE, _V4L2_EXPOSURE_AUTO)
            else:
                self.cap.set(cv2.CAP_PROP_AUTO_EXPOSURE, _V4L2_EXPOSURE_MANUAL)
                self.cap.set(cv2.CAP_PROP_EXPOSURE, float(cfg.exposure))

        if cfg.white_balance is not None and str(cfg.white_balance).lower() != "hold":
            if str(cfg.white_balance).lower() == "auto":
                self.cap.set(cv2.CAP_PROP_AUTO_WB, 1)
            else:
                self.cap.set(cv2.CAP_PROP_AUTO_WB, 0)
                self.cap.set(cv2.CAP_PROP_WB_TEMPERATURE, float(cfg.white_balance))

        for name, value in cfg.properties:
            prop = getattr(cv2, f"CAP_PROP_{str(name).upper().replace(' ', '_')}", None)
            if prop is None:
                self.logger.warning(f"Unknown camera property '{name}' ignored")
                continue
            self.cap.set(prop, float(value))

    def _query_mode(self) -> None:
        fourcc = int(self.cap.get(cv2.CAP_PROP_FOURCC))
        self.actual_fourcc = "".join(chr((fourcc >> (8 * i)) & 0xFF) for i in range(4)) if fourcc else ""
        self.actual_width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.actual_height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self.actual_fps = self.cap.get(cv2.CAP_PROP_FPS)
        self.logger.info(
            f"{self.actual_width}x{self.actual_height}@{self.actual_fps:.1f} FPS "
            f"(FOURCC='{self.actual_fourcc}')"
        )
        if (self.actual_width, self.actual_height) != (self.config.width, self.config.height):
            self.logger.warning(
                f"Requested {self.config.width}x{self.config.height}, "
                f"driver negotiated {self.actual_width}x{self.actual_height}"
            )
