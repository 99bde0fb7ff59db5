"""Frame Viewer Handler - a Qt window that shows every live display stream.

Polls each FrameStream at ~30 fps and converts OpenCV BGR (or single-channel
mask) frames into QPixmaps. A stream whose source is faulting shows its last
error message instead of a frame.

Enable with ``--show-frames`` CLI flag.
"""
from typing import Dict, List, Optional

import numpy as np

from PyQt6.QtWidgets import QMainWindow, QLabel, QGridLayout, QVBoxLayout, QWidget
from PyQt6.QtCore import QTimer, Qt
from PyQt6.QtGui import QImage, QPixmap

from Handlers.Stream_Handler import FrameStream
from utils.logger import Logger


class FrameViewerHandler(QMainWindow):
    """Live multi-stream viewer window.

    One tile per stream, laid out in a grid of *columns* tiles per row.
    The window must be created after the QApplication exists.
    """

    def __init__(self, streams: List[FrameStream], title: str = "Vision Node | Streams",
                 columns: int = 2):
        super().__init__()
        self.streams = streams
        self.logger = Logger("FrameViewer")
        self._labels: Dict[str, QLabel] = {}
        self._shown_error: Dict[str, Optional[str]] = {}

        # ── Window chrome ────────────────────────────────────────────
        self.setWindowTitle(title)
        self.setMinimumSize(640, 480)
        self.resize(960, 720)

        # ── Stream grid ──────────────────────────────────────────────
        central = QWidget()
        grid = QGridLayout(central)
        grid.setContentsMargins(0, 0, 0, 0)
        for index, stream in enumerate(streams):
            grid.addWidget(self._make_tile(stream), index // columns, index % columns)
        self.setCentralWidget(central)

        # ── Poll timer (~30 fps) ─────────────────────────────────────
        self._timer = QTimer(self)
        self._timer.timeout.connect(self._poll_streams)
        self._timer.start(33)  # ~30 Hz

        self.logger.info(f"Frame viewer window created ({len(streams)} stream(s))")

    def _make_tile(self, stream: FrameStream) -> QWidget:
        tile = QWidget()
        layout = QVBoxLayout(tile)
        layout.setContentsMargins(2, 2, 2, 2)

        caption = QLabel(stream.name)
        caption.setStyleSheet("color: #ccc; font-size: 12px;")
        image_label = QLabel("Waiting for frames …")
        image_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        image_label.setStyleSheet("background: #111; color: #888; font-size: 14px;")

        layout.addWidget(caption)
        layout.addWidget(image_label, stretch=1)
        self._labels[stream.name] = image_label
        return tile

    # ── Internal ─────────────────────────────────────────────────────

    def _poll_streams(self) -> None:
        """Show the newest frame of each stream, or its pending error."""
        for stream in self.streams:
            label = self._labels[stream.name]
            latest = stream.latest()
            if latest is not None:
                self._shown_error[stream.name] = None
                self._display_frame(label, latest)
                continue

            error = stream.status()["last_error"]
            if error and error != self._shown_error.get(stream.name):
                self._shown_error[stream.name] = error
                label.clear()
                label.setText(f"⚠ {error}")

    def _display_frame(self, label: QLabel, frame: np.ndarray) -> None:
        """Convert a BGR numpy frame to QPixmap and set it on the label."""
        if frame.ndim == 2:
            # Grayscale (binary masks)
            frame = np.ascontiguousarray(frame)
            h, w = frame.shape
            q_img = QImage(frame.data, w, h, w, QImage.Format.Format_Grayscale8)
        else:
            h, w, ch = frame.shape
            # OpenCV uses BGR, Qt needs RGB
            rgb = frame[..., ::-1].copy()
            q_img = QImage(rgb.data, w, h, ch * w, QImage.Format.Format_RGB888)

        pixmap = QPixmap.fromImage(q_img)

        # Scale to label size, preserving aspect ratio
        scaled = pixmap.scaled(
            label.size(),
            Qt.AspectRatioMode.KeepAspectRatio,
            Qt.TransformationMode.SmoothTransformation,
        )
        label.setPixmap(scaled)

    # ── Lifecycle ────────────────────────────────────────────────────

    def stop(self) -> None:
        """Stop the polling timer and close the window."""
        self._timer.stop()
        self.close()
