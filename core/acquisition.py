"""
Acquisition Worker - the per-source frame cycle.

One worker thread per video source. Each cycle runs three strictly
sequential phases:

    ACQUIRING  → grab a frame (the only blocking call)
    PROCESSING → crop / crosshair display frames, run every pipeline + locator
    PUBLISHING → push frames to viewer sinks, publish BlobResult fields

Capture faults, pipeline errors, sink and telemetry failures are all
recovered inside the cycle and reported on the EventBus; nothing short of
the stop event ends the loop. A source that fails to open is reported the
same way and reopened every ``restart_delay`` seconds. Workers share no
mutable state: each owns its FrameBufferPool, and the NodeConfig they read
is frozen.
"""
import time
from dataclasses import dataclass, field
from enum import Enum
from threading import Thread, Event
from typing import Dict, List, Optional

import numpy as np

from core.buffers import FrameBufferPool
from core.bus import EventBus
from core.events import CaptureFault, PipelineFault, SinkFault, TelemetryFault
from core.locator import BlobResult, locate_blob
from core.pipeline import Pipeline
from core.protocols import FrameSource, TelemetryStore, ViewerSink
from core.targets import TargetConstants
from Handlers.Overlay_Handler import OverlayHandler
from utils.config import SourceConfig, StreamSettings
from utils.logger import Logger


class AcquisitionState(Enum):
    ACQUIRING = "acquiring"
    PROCESSING = "processing"
    PUBLISHING = "publishing"


@dataclass
class WorkerSinks:
    """
    Viewer sinks fed by one worker.

    ``crosshair`` is the paired sink that receives capture-fault
    notifications.
    """
    cropped: ViewerSink
    crosshair: ViewerSink
    processed: Dict[str, ViewerSink] = field(default_factory=dict)

    @property
    def error_sink(self) -> ViewerSink:
        return self.crosshair


class AcquisitionWorker(Thread):
    """
    Continuous acquisition loop for one source.

    Call :meth:`run_cycle` directly to drive a single cycle (tests, tools);
    :meth:`run` loops it until ``stop_event`` is set.
    """

    def __init__(
        self,
        source_config: SourceConfig,
        source: FrameSource,
        sinks: WorkerSinks,
        telemetry: TelemetryStore,
        bus: EventBus,
        stop_event: Event,
        stream: StreamSettings = StreamSettings(),
        retry_delay: float = 0.1,
        restart_delay: float = 1.0,
    ):
        """
        Args:
            source_config: Frozen configuration of this source and its target bindings.
            source: Frame source implementing the FrameSource protocol.
            sinks: Display streams this worker feeds.
            telemetry: Store receiving one namespace of fields per target class.
            bus: Control-plane bus for fault events.
            stop_event: Shared shutdown signal, checked before every grab.
            stream: Display stream resolution and frame-rate divider.
            retry_delay: Pause after a capture fault before grabbing again.
            restart_delay: Pause between attempts to open a source that failed to start.
        """
        super().__init__(name=f"Acquisition-{source_config.name}", daemon=True)
        self.source_config = source_config
        self.source = source
        self.sinks = sinks
        self.telemetry = telemetry
        self.bus = bus
        self.stop_event = stop_event
        self.stream = stream
        self.retry_delay = retry_delay
        self.restart_delay = restart_delay
        self.logger = Logger(f"Acquisition[{source_config.name}]")

        self.pipelines: List[tuple] = [
            (Pipeline(binding.pipeline), binding.target)
            for binding in source_config.bindings
        ]
        self.overlay = OverlayHandler(stream.width, stream.height)
        self.buffers = FrameBufferPool(owner=source_config.name)
        self.ready = Event()
        self.source_ok = False

        # State, exclusively owned by this thread
        self.state = AcquisitionState.ACQUIRING
        self._divider_counter = 0
        self.frame_count = 0
        self.fault_count = 0
        self.fps = 0.0
        self._fps_window_start = time.monotonic()
        self._fps_window_frames = 0

    # ── Thread entry ─────────────────────────────────────────────────

    def run(self) -> None:
        self.source_ok = self._start_source()
        self.ready.set()
        self.logger.info(
            f"Acquisition running ({len(self.pipelines)} pipeline(s): "
            f"{', '.join(p.name for p, _ in self.pipelines) or 'stream only'})"
        )

        try:
            while not self.stop_event.is_set():
                if not self.source_ok:
                    # Reopen until the source starts
                    if self.stop_event.wait(self.restart_delay):
                        break
                    self.source_ok = self._start_source()
                    if self.source_ok:
                        self.logger.info("Frame source started after retry")
                    continue
                try:
                    results = self.run_cycle()
                except Exception as e:
                    # Never let one bad cycle take the worker down
                    self.logger.error(f"Unexpected cycle error: {e}")
                    self.state = AcquisitionState.ACQUIRING
                    results = None
                if results is None and self.retry_delay > 0:
                    self.stop_event.wait(self.retry_delay)
        finally:
            self.source.stop()
            self.buffers.release()
            self.logger.info(
                f"Acquisition stopped after {self.frame_count} frame(s), "
                f"{self.fault_count} capture fault(s)"
            )

    def _start_source(self) -> bool:
        """Open the source; a failure counts as one capture fault."""
        if self.source.start():
            return True
        message = self.source.get_error() or "source failed to start"
        self.fault_count += 1
        self.logger.error(f"Frame source failed to start: {message}")
        self._notify_error(message)
        self.bus.publish(CaptureFault(source=self.source_config.name, message=message))
        return False

    # ── One cycle ────────────────────────────────────────────────────

    def run_cycle(self) -> Optional[Dict[str, BlobResult]]:
        """
        Run ACQUIRING → PROCESSING → PUBLISHING once.

        Returns:
            BlobResults keyed by target name, or None after a capture fault.
        """
        # ACQUIRING
        self.state = AcquisitionState.ACQUIRING
        frame = self._acquire()
        if frame is None:
            return None

        # PROCESSING
        self.state = AcquisitionState.PROCESSING
        stream_due = self._advance_divider()
        display = self._render_display(frame) if stream_due else {}

        results: Dict[str, BlobResult] = {}
        views: Dict[str, np.ndarray] = {}
        for pipeline, target in self.pipelines:
            result = self._process_target(pipeline, target, frame)
            if result is not None:
                results[target.name], views[target.name] = result

        # PUBLISHING
        self.state = AcquisitionState.PUBLISHING
        if stream_due:
            for stream_name, image in display.items():
                self._push(stream_name, getattr(self.sinks, stream_name), image)
            for target_name, view in views.items():
                sink = self.sinks.processed.get(target_name)
                if sink is not None:
                    self._push(target_name, sink, view)

        for target_name, blob in results.items():
            self._publish(target_name, blob)

        self._update_fps()
        self.state = AcquisitionState.ACQUIRING
        return results

    # ── Phases ───────────────────────────────────────────────────────

    def _acquire(self) -> Optional[np.ndarray]:
        """Grab into the pooled frame buffer; report and swallow capture faults."""
        buffer = self.buffers.peek("frame")
        if buffer is None:
            buffer = self.buffers.acquire(
                "frame", (self.source_config.height, self.source_config.width, 3)
            )

        frame, ok = self.source.grab_frame(buffer)
        if not ok or frame is None or frame.size == 0:
            message = self.source.get_error() or "frame grab failed"
            self.fault_count += 1
            self.logger.debug(f"Capture fault: {message}")
            self._notify_error(message)
            self.bus.publish(CaptureFault(source=self.source_config.name, message=message))
            return None

        if frame is not buffer:
            # Driver delivered a differently-shaped frame; reuse that from now on
            self.buffers.adopt("frame", frame)
        self.frame_count += 1
        return frame

    def _advance_divider(self) -> bool:
        """True on the cycles whose display frames are streamed."""
        self._divider_counter = (self._divider_counter + 1) % self.stream.frame_rate_divider
        return self._divider_counter == 0

    def _render_display(self, frame: np.ndarray) -> Dict[str, np.ndarray]:
        shape = (self.stream.height, self.stream.width) + frame.shape[2:]

        roi = self.overlay.crop(frame, self.source_config.region)
        cropped = self.overlay.scale(roi, dst=self.buffers.acquire("stream.cropped", shape))

        crosshair = self.overlay.scale(frame, dst=self.buffers.acquire("stream.crosshair", shape))
        self.overlay.draw_crosshair(crosshair)

        return {"cropped": cropped, "crosshair": crosshair}

    def _process_target(self, pipeline: Pipeline, target: TargetConstants, frame: np.ndarray):
        try:
            output = pipeline.run(frame, self.buffers)
            blob = locate_blob(output.output, pipeline.frame_width, target)
        except Exception as e:
            self.logger.error(f"Pipeline '{pipeline.name}' failed: {e}")
            self.bus.publish(PipelineFault(
                source=self.source_config.name, target=target.name, message=str(e),
            ))
            return None
        return blob, output.output

    def _push(self, stream_name: str, sink: ViewerSink, image: np.ndarray) -> None:
        try:
            sink.push_frame(image)
        except Exception as e:
            self.logger.warning(f"Stream '{stream_name}' rejected frame: {e}")
            self.bus.publish(SinkFault(stream=stream_name, message=str(e)))

    def _notify_error(self, message: str) -> None:
        try:
            self.sinks.error_sink.notify_error(message)
        except Exception as e:
            self.logger.warning(f"Error notification failed: {e}")
            self.bus.publish(SinkFault(stream="crosshair", message=str(e)))

    def _publish(self, namespace: str, blob: BlobResult) -> None:
        """Fire-and-forget: a failing store costs this target's fields for one cycle."""
        try:
            for field_name, value in blob.as_telemetry().items():
                self.telemetry.publish(namespace, field_name, value)
        except Exception as e:
            self.logger.warning(f"Telemetry publish for '{namespace}' failed: {e}")
            self.bus.publish(TelemetryFault(namespace=namespace, message=str(e)))

    def _update_fps(self) -> None:
        self._fps_window_frames += 1
        now = time.monotonic()
        elapsed = now - self._fps_window_start
        if elapsed >= 1.0:
            self.fps = self._fps_window_frames / elapsed
            self._fps_window_frames = 0
            self._fps_window_start = now
