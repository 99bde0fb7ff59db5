"""
Global constants for the vision node.
"""
from pathlib import Path

# Project Structure
BASE_DIR = Path(__file__).parent.parent
CONFIGS_DIR = BASE_DIR / "configs"
LOGS_DIR = BASE_DIR / "logs"
LOG_FILE_NAME = "vision.log"

# Display streams (dashboard bandwidth budget)
DEFAULT_STREAM_WIDTH = 320
DEFAULT_STREAM_HEIGHT = 240
DEFAULT_FRAME_RATE_DIVIDER = 2
STREAM_QUEUE_SIZE = 2

# Crosshair overlay (BGR)
CROSSHAIR_COLOR = (0, 255, 0)
CROSSHAIR_THICKNESS = 1
CROSSHAIR_GAP = 6

# Camera defaults
DEFAULT_CAMERA_FPS = 30
MAX_CONSECUTIVE_GRAB_FAILURES = 30

# Telemetry
DEFAULT_TELEMETRY_URL = "http://localhost:5810"
EVENT_TELEMETRY = "telemetry"
EVENT_TELEMETRY_SNAPSHOT = "telemetry_snapshot"

# Shutdown
WORKER_JOIN_TIMEOUT = 2.0
