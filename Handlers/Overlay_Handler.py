"""Overlay Handler - prepares the driver-facing display frames.

Crops the region of interest, scales frames down to the stream resolution
(area interpolation keeps the dashboard bandwidth low) and draws the fixed
crosshair. All drawing happens in place on buffers owned by the calling
worker.
"""
from typing import Optional, Tuple

import cv2
import numpy as np

from core.stages import Interpolation, resize
from utils.constants import CROSSHAIR_COLOR, CROSSHAIR_GAP, CROSSHAIR_THICKNESS


class OverlayHandler:
    """Crop, scale and crosshair helpers for one set of display streams."""

    def __init__(
        self,
        stream_width: int,
        stream_height: int,
        color: Tuple[int, int, int] = CROSSHAIR_COLOR,
        thickness: int = CROSSHAIR_THICKNESS,
        gap: int = CROSSHAIR_GAP,
    ):
        self.stream_width = stream_width
        self.stream_height = stream_height
        self.color = color
        self.thickness = thickness
        self.gap = gap

    def crop(self, frame: np.ndarray, roi: Tuple[int, int, int, int]) -> np.ndarray:
        """
        Return a view of ``frame`` limited to ``roi`` (x, y, w, h).

        The rectangle is clipped to the frame so a camera that negotiated a
        smaller mode than configured still yields a valid (smaller) view.
        """
        x, y, w, h = roi
        fh, fw = frame.shape[:2]
        x0, y0 = min(max(x, 0), fw - 1), min(max(y, 0), fh - 1)
        x1, y1 = min(x0 + w, fw), min(y0 + h, fh)
        return frame[y0:y1, x0:x1]

    def scale(self, frame: np.ndarray, dst: Optional[np.ndarray] = None) -> np.ndarray:
        """Scale a frame to the stream resolution."""
        return resize(frame, self.stream_width, self.stream_height, Interpolation.AREA, dst=dst)

    def draw_crosshair(self, image: np.ndarray) -> np.ndarray:
        """Draw a centred crosshair with a small gap around the aim point."""
        h, w = image.shape[:2]
        cx, cy = w // 2, h // 2
        g = self.gap
        cv2.line(image, (0, cy), (cx - g, cy), self.color, self.thickness)
        cv2.line(image, (cx + g, cy), (w - 1, cy), self.color, self.thickness)
        cv2.line(image, (cx, 0), (cx, cy - g), self.color, self.thickness)
        cv2.line(image, (cx, cy + g), (cx, h - 1), self.color, self.thickness)
        return image
