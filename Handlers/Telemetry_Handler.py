"""
Telemetry Handler - Publishes blob measurements to the robot dashboard.

Implements the TelemetryStore protocol. ``TelemetryTable`` is the
in-memory store used offline and by tests; ``SocketTelemetryHandler``
mirrors every value into a table and emits it over Socket.IO. Values
published while disconnected are kept and replayed as one snapshot on
(re)connect, so the dashboard always converges on the latest values.
"""
import copy
import threading
from typing import Any, Dict, Optional

import socketio

from utils.constants import EVENT_TELEMETRY, EVENT_TELEMETRY_SNAPSHOT
from utils.failures import TelemetryError
from utils.logger import Logger


class TelemetryTable:
    """Thread-safe ``namespace -> field -> value`` store."""

    def __init__(self):
        self._values: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()

    def publish(self, namespace: str, field: str, value: float) -> None:
        with self._lock:
            self._values.setdefault(namespace, {})[field] = value

    def get(self, namespace: str, field: str, default: Optional[float] = None) -> Optional[float]:
        with self._lock:
            return self._values.get(namespace, {}).get(field, default)

    def namespace(self, namespace: str) -> Dict[str, float]:
        with self._lock:
            return dict(self._values.get(namespace, {}))

    def snapshot(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return copy.deepcopy(self._values)

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)


class SocketTelemetryHandler:
    """Socket.IO telemetry publisher.

    Implements the TelemetryStore protocol:
        publish(namespace, field, value) -> None
    plus connect() / disconnect().
    """

    def __init__(self, server_url: str, team: int = 0):
        """
        Args:
            server_url: URL of the dashboard's Socket.IO server
            team: Team number, sent with every snapshot
        """
        self.server_url = server_url
        self.team = team
        self.sio = socketio.Client(reconnection=True, reconnection_attempts=0,
                                   reconnection_delay=1, reconnection_delay_max=10)
        self.table = TelemetryTable()
        self.connected = False
        self.logger = Logger("TelemetryHandler")

        self._setup_handlers()

    def _setup_handlers(self):
        """Setup socket.io event handlers."""
        @self.sio.on('connect')
        def on_connect():
            self.connected = True
            self.logger.info(f"Connected to dashboard at {self.server_url}")
            self._replay()

        @self.sio.on('disconnect')
        def on_disconnect():
            self.connected = False
            self.logger.warning("Disconnected from dashboard")

    def connect(self) -> bool:
        """Connect to the dashboard server."""
        if self.connected:
            return True

        try:
            self.sio.connect(self.server_url)
            return True
        except socketio.exceptions.ConnectionError as e:
            self.logger.error(f"Connection failed: {e}")
            return False

    def disconnect(self) -> None:
        """Disconnect from the server."""
        if self.connected:
            self.sio.disconnect()

    # ── TelemetryStore protocol ───────────────────────────────────────

    def publish(self, namespace: str, field: str, value: float) -> None:
        self.table.publish(namespace, field, value)
        if not self.connected:
            return
        try:
            self.sio.emit(EVENT_TELEMETRY, {'namespace': namespace, 'field': field, 'value': value})
        except socketio.exceptions.SocketIOError as e:
            raise TelemetryError(f"emit of {namespace}/{field} failed: {e}") from e

    # ── Internal ─────────────────────────────────────────────────────

    def _replay(self) -> None:
        snapshot = self.table.snapshot()
        if not snapshot:
            return
        payload: Dict[str, Any] = {'team': self.team, 'values': snapshot}
        try:
            self.sio.emit(EVENT_TELEMETRY_SNAPSHOT, payload)
            self.logger.info(f"Replayed {len(snapshot)} namespace(s) after connect")
        except socketio.exceptions.SocketIOError as e:
            self.logger.error(f"Snapshot replay failed: {e}")
