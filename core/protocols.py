"""
Protocol definitions (interfaces) for the vision node's collaborators.

The acquisition loop only ever talks to these contracts, so cameras,
dashboard streams and the telemetry store can be swapped or faked in
tests.
"""
from typing import Protocol, Optional, Tuple, runtime_checkable
import numpy as np


@runtime_checkable
class FrameSource(Protocol):
    """Interface for any frame-producing component (USB camera, video file, etc.)."""

    def start(self) -> bool:
        """Open the device and begin acquisition. Returns True on success."""
        ...

    def grab_frame(self, buffer: Optional[np.ndarray] = None) -> Tuple[Optional[np.ndarray], bool]:
        """
        Block until the next frame is available.

        Args:
            buffer: Optional pre-allocated BGR array to capture into.

        Returns:
            (frame, ok). ``ok`` is False on a capture fault; the reason is
            then available from :meth:`get_error`.
        """
        ...

    def get_error(self) -> str:
        """Human-readable description of the last capture fault."""
        ...

    def stop(self) -> None:
        """Release the device."""
        ...


@runtime_checkable
class ViewerSink(Protocol):
    """A named output stream shown to the drivers."""

    def push_frame(self, frame: np.ndarray) -> None:
        """Hand a new frame to the stream."""
        ...

    def notify_error(self, message: str) -> None:
        """Tell viewers the stream's source is currently failing."""
        ...


@runtime_checkable
class TelemetryStore(Protocol):
    """Key/value destination read by the remote operator console."""

    def publish(self, namespace: str, field: str, value: float) -> None:
        """
        Set one numeric field.

        Args:
            namespace: Owning table, one per target class (e.g. "cargo").
            field: Field name (e.g. "xMax", "distance").
            value: Numeric value.
        """
        ...
