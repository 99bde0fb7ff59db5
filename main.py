"""
Vision Node - Entry Point

One acquisition worker per camera, an Event Bus for faults and shutdown:
    FrameSource → AcquisitionWorker ─┬→ FrameStreams (cropped / crosshair / per-target mask)
                                     ├→ TelemetryStore (one namespace per target)
                                     └→ EventBus → FaultMonitor → FailureManager
"""
import sys
import signal
import argparse
from threading import Event
from typing import Dict, List, Optional

from utils.config import Config, NodeConfig, SourceConfig, build_node_config
from utils.constants import WORKER_JOIN_TIMEOUT
from utils.failures import ConfigError, FailureManager
from utils.logger import Logger

from core.acquisition import AcquisitionWorker, WorkerSinks
from core.bus import EventBus
from core.events import ShutdownRequested
from core.fault_monitor import FaultMonitor
from core.protocols import FrameSource, TelemetryStore
from Handlers.Stream_Handler import FrameStream
from Handlers.Telemetry_Handler import SocketTelemetryHandler, TelemetryTable

SOURCE_START_TIMEOUT = 10.0


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(description="Vision Node - game piece detection for the robot")
    parser.add_argument(
        '--config', '-c',
        type=str,
        default=None,
        help='Config directory or single JSON file (default: ./configs)'
    )
    parser.add_argument(
        '--video', '-v',
        type=str,
        default=None,
        help='Path to video file for testing (bypasses cameras)'
    )
    parser.add_argument(
        '--offline', '-o',
        action='store_true',
        help='Run in offline mode (telemetry kept in memory only)'
    )
    parser.add_argument(
        '--show-frames',
        action='store_true',
        help='Open a window with every display stream'
    )
    return parser.parse_args(argv)


class VisionNode:
    """
    Vision Node Orchestrator.

    Wires together:
      - one AcquisitionWorker per configured camera
      - FrameStreams for the driver view (optionally shown in a Qt window)
      - the telemetry store (Socket.IO or in-memory)
      - the FaultMonitor on the EventBus

    Workers share nothing but the frozen NodeConfig, the bus and the stop event.
    """

    def __init__(self, config: Config, node_config: NodeConfig, video_path: Optional[str] = None,
                 offline: bool = False, show_frames: bool = False):
        # ── 1. Foundation ────────────────────────────────────────────
        self.config = config
        self.node_config = node_config
        self.logger = Logger("VisionNode")
        self.logger.info(
            f"Initializing Vision Node (team {node_config.team}, "
            f"{len(node_config.sources)} camera(s))..."
        )

        self.video_path = video_path
        self.offline = offline or not node_config.telemetry_enabled
        self.show_frames = show_frames

        # Shared shutdown signal
        self.stop_event = Event()

        # Central event bus
        self.bus = EventBus()
        self.bus.subscribe(ShutdownRequested, self._on_shutdown_requested)

        # ── 2. Fault tracking ────────────────────────────────────────
        self.failures = FailureManager(node_config.failures)
        self.fault_monitor = FaultMonitor(self.bus, self.failures)

        # ── 3. Telemetry ─────────────────────────────────────────────
        self.socket_handler: Optional[SocketTelemetryHandler] = None
        if self.offline:
            self.logger.info("Offline mode - telemetry kept in memory")
            self.telemetry: TelemetryStore = TelemetryTable()
        else:
            self.socket_handler = SocketTelemetryHandler(node_config.telemetry_url, team=node_config.team or 0)
            self.telemetry = self.socket_handler

        # ── 4. Streams + workers (one per camera) ────────────────────
        self.streams: List[FrameStream] = []
        self.workers: List[AcquisitionWorker] = []
        for source_config in node_config.sources:
            self.workers.append(self._build_worker(source_config))

        # ── 5. Optional viewer ───────────────────────────────────────
        self.app = None
        self.viewer = None

        # ── 6. OS Signals ────────────────────────────────────────────
        self._setup_signals()
        self.logger.info("Vision Node initialized successfully")

    def _build_worker(self, source_config: SourceConfig) -> AcquisitionWorker:
        name = source_config.name
        sinks = WorkerSinks(
            cropped=self._stream(f"{name}.cropped"),
            crosshair=self._stream(f"{name}.crosshair"),
            processed={
                binding.target.name: self._stream(f"{name}.{binding.target.name}")
                for binding in source_config.bindings
            },
        )
        if not source_config.has_pipelines:
            self.logger.info(f"Camera '{name}' has no pipelines - streaming only")

        return AcquisitionWorker(
            source_config=source_config,
            source=self._frame_source(source_config),
            sinks=sinks,
            telemetry=self.telemetry,
            bus=self.bus,
            stop_event=self.stop_event,
            stream=self.node_config.stream,
        )

    def _stream(self, name: str) -> FrameStream:
        stream = FrameStream(name)
        self.streams.append(stream)
        return stream

    def _frame_source(self, source_config: SourceConfig) -> FrameSource:
        if self.video_path:
            from Handlers.Video_Input_Handler import VideoInputHandler
            self.logger.info(f"Video test mode for '{source_config.name}': {self.video_path}")
            return VideoInputHandler(self.video_path, fps=source_config.fps)

        from Handlers.Camera_Handler import CameraHandler
        return CameraHandler(source_config)

    def _setup_signals(self):
        """Handle OS signals for graceful shutdown."""
        def handler(sig, frame):
            self.logger.info("Shutdown signal received")
            self.bus.publish(ShutdownRequested(reason=signal.Signals(sig).name))
        signal.signal(signal.SIGINT, handler)
        signal.signal(signal.SIGTERM, handler)

    def _on_shutdown_requested(self, event: ShutdownRequested) -> None:
        self.logger.info(f"Shutdown requested ({event.reason})")
        self.stop()

    def start(self) -> bool:
        """
        Start every worker and block until shutdown.

        Returns:
            False when no camera could be started.
        """
        self.logger.info("Starting Vision Node services...")

        if self.socket_handler and not self.socket_handler.connect():
            self.logger.warning("Dashboard unreachable - telemetry kept in memory only")

        for worker in self.workers:
            worker.start()

        started = self._wait_for_sources()
        if self.workers and not started:
            self.logger.critical("No camera could be started")
            self.stop()
            return False
        self.logger.info(f"{len(started)} of {len(self.workers)} camera(s) running")
        for worker in self.workers:
            name = worker.source_config.name
            if name not in started:
                self.logger.warning(f"Camera '{name}' not started - retrying in background")

        if self.show_frames:
            self._run_viewer()
        else:
            while not self.stop_event.wait(timeout=1.0):
                pass

        self.stop()
        return True

    def _wait_for_sources(self) -> List[str]:
        started = []
        for worker in self.workers:
            worker.ready.wait(timeout=SOURCE_START_TIMEOUT)
            if worker.source_ok:
                started.append(worker.source_config.name)
        return started

    def _run_viewer(self) -> None:
        """Qt event loop on the main thread until the window closes or shutdown."""
        from PyQt6.QtCore import QTimer
        from PyQt6.QtWidgets import QApplication
        from Handlers.Frame_Viewer_Handler import FrameViewerHandler

        self.app = QApplication.instance() or QApplication(sys.argv)
        self.viewer = FrameViewerHandler(self.streams)
        self.viewer.show()

        # Give the interpreter a chance to run signal handlers
        watchdog = QTimer()
        watchdog.timeout.connect(lambda: self.stop_event.is_set() and self.app.quit())
        watchdog.start(200)

        try:
            self.app.exec()
        finally:
            watchdog.stop()

    def status(self) -> Dict[str, Dict[str, float]]:
        """Per-camera counters for logs and tools."""
        return {
            worker.source_config.name: {
                "frames": worker.frame_count,
                "faults": worker.fault_count,
                "fps": round(worker.fps, 1),
            }
            for worker in self.workers
        }

    def stop(self):
        """Gracefully shutdown all components."""
        if self.stop_event.is_set():
            return  # Already shutting down

        self.stop_event.set()
        self.logger.info("Stopping Vision Node...")

        if self.viewer:
            self.viewer.stop()

        for worker in self.workers:
            if worker.is_alive():
                worker.join(timeout=WORKER_JOIN_TIMEOUT)
                if worker.is_alive():
                    self.logger.warning(f"Worker '{worker.name}' did not stop in time")

        if self.socket_handler:
            self.socket_handler.disconnect()

        self.fault_monitor.close()
        self.bus.clear()

        self.logger.info(f"Vision Node stopped {self.status()}")


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = Config(args.config)
        Logger.setup(config.get('logging', {}))
        node_config = build_node_config(config)
    except ConfigError as e:
        Logger("VisionNode").critical(f"Startup aborted: {e}")
        return 1

    node = VisionNode(
        config=config,
        node_config=node_config,
        video_path=args.video,
        offline=args.offline,
        show_frames=args.show_frames,
    )
    return 0 if node.start() else 1


if __name__ == "__main__":
    sys.exit(main())
