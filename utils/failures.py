"""
Structured error handling and failure tracking for the vision node.
"""
import threading
import time
from typing import Dict, List, Optional
from utils.logger import Logger


class VisionError(Exception):
    """Base class for all vision node exceptions."""
    def __init__(self, message: str, critical: bool = False):
        super().__init__(message)
        self.message = message
        self.critical = critical
        self.timestamp = time.time()


class CaptureError(VisionError):
    """A frame source could not deliver a frame for one cycle."""
    pass


class StageError(VisionError):
    """An image stage received input it cannot process (e.g. an empty frame)."""
    pass


class TelemetryError(VisionError):
    """Publishing a telemetry field failed."""
    pass


class SinkError(VisionError):
    """Pushing a frame or error to a viewer sink failed."""
    pass


class ConfigError(VisionError):
    """Startup configuration is missing or malformed."""
    def __init__(self, message: str, critical: bool = True):
        super().__init__(message, critical)


class FailureManager:
    """Counts recurring faults per type so noisy collaborators get flagged."""

    def __init__(self, settings: Optional[dict] = None):
        """
        Args:
            settings: Optional dict with 'threshold' (faults) and
                      'window_seconds' (sliding window length).
        """
        self.logger = Logger("FailureManager")

        self.settings = settings or {}
        self.threshold = self.settings.get('threshold', 5)
        self.window_seconds = self.settings.get('window_seconds', 60)

        self.failures: Dict[str, List[float]] = {}
        self.history: List[VisionError] = []
        self._max_history = 100
        self._lock = threading.Lock()

    def record_failure(self, error: Exception) -> None:
        """
        Record a fault (thread-safe).

        Args:
            error: The exception describing the fault.
        """
        with self._lock:
            error_type = type(error).__name__
            now = time.time()

            timestamps = self.failures.setdefault(error_type, [])
            timestamps.append(now)
            cutoff = now - self.window_seconds
            self.failures[error_type] = [t for t in timestamps if t > cutoff]

            if isinstance(error, VisionError):
                self.history.append(error)
                msg = f"Failure detected: {error_type} - {error.message}"
                if error.critical:
                    self.logger.error(f"CRITICAL: {msg}")
                else:
                    self.logger.warning(msg)
            else:
                self.logger.error(f"Unexpected failure: {error_type} - {error}")

            if len(self.history) > self._max_history:
                self.history = self.history[-self._max_history:]

            # Alert exactly once when the window count reaches the threshold
            if len(self.failures[error_type]) == self.threshold:
                self.logger.warning(
                    f"Resilience Alert: '{error_type}' reached threshold "
                    f"({self.threshold} in {self.window_seconds}s)"
                )

    def is_threshold_exceeded(self, error_type: str) -> bool:
        """Check whether a fault type has hit the frequency threshold."""
        with self._lock:
            if error_type not in self.failures:
                return False
            now = time.time()
            self.failures[error_type] = [
                t for t in self.failures[error_type] if (now - t) < self.window_seconds
            ]
            return len(self.failures[error_type]) >= self.threshold

    def count(self, error_type: str) -> int:
        """Number of faults of this type currently inside the window."""
        with self._lock:
            return len(self.failures.get(error_type, []))

    def get_recent_history(self, count: int = 10) -> List[VisionError]:
        """Return the most recent recorded faults."""
        with self._lock:
            return self.history[-count:]

    def clear(self) -> None:
        """Reset all tracked faults."""
        with self._lock:
            self.failures = {}
            self.history = []
        self.logger.info("Failure history cleared.")
