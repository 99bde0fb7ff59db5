"""
Fault Monitor - bridges fault events on the EventBus to the FailureManager.

Workers report faults as events and move on; this subscriber turns them
into typed VisionErrors so recurring faults (a flaky USB cable, a dead
dashboard connection) are counted and flagged in one place.
"""
from core.bus import EventBus
from core.events import CaptureFault, PipelineFault, SinkFault, TelemetryFault
from utils.failures import (
    FailureManager, CaptureError, StageError, SinkError, TelemetryError,
)
from utils.logger import Logger


class FaultMonitor:
    """Subscribes to every fault event and records it."""

    def __init__(self, bus: EventBus, failures: FailureManager):
        self.bus = bus
        self.failures = failures
        self.logger = Logger("FaultMonitor")

        self.bus.subscribe(CaptureFault, self._on_capture_fault)
        self.bus.subscribe(PipelineFault, self._on_pipeline_fault)
        self.bus.subscribe(SinkFault, self._on_sink_fault)
        self.bus.subscribe(TelemetryFault, self._on_telemetry_fault)

    def _on_capture_fault(self, event: CaptureFault) -> None:
        self.failures.record_failure(
            CaptureError(f"[{event.source}] {event.message or 'frame grab failed'}")
        )

    def _on_pipeline_fault(self, event: PipelineFault) -> None:
        self.failures.record_failure(
            StageError(f"[{event.source}/{event.target}] {event.message}")
        )

    def _on_sink_fault(self, event: SinkFault) -> None:
        self.failures.record_failure(SinkError(f"[{event.stream}] {event.message}"))

    def _on_telemetry_fault(self, event: TelemetryFault) -> None:
        self.failures.record_failure(TelemetryError(f"[{event.namespace}] {event.message}"))

    def close(self) -> None:
        self.bus.unsubscribe(CaptureFault, self._on_capture_fault)
        self.bus.unsubscribe(PipelineFault, self._on_pipeline_fault)
        self.bus.unsubscribe(SinkFault, self._on_sink_fault)
        self.bus.unsubscribe(TelemetryFault, self._on_telemetry_fault)
