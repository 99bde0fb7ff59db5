"""
Typed control-plane events for the vision node.

Workers never call the failure tracker or the node directly; they publish
these dataclasses on the EventBus and whoever cares subscribes.
"""
from dataclasses import dataclass, field
import time


@dataclass(frozen=True)
class CaptureFault:
    """A source failed to deliver a frame for one cycle."""
    source: str
    message: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class PipelineFault:
    """A pipeline or the locator raised while processing a frame."""
    source: str
    target: str
    message: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class SinkFault:
    """A viewer sink rejected a frame or an error notification."""
    stream: str
    message: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class TelemetryFault:
    """Publishing telemetry for a target failed."""
    namespace: str
    message: str = ""
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ShutdownRequested:
    """Published to signal a graceful shutdown of all workers."""
    reason: str = "user"
    timestamp: float = field(default_factory=time.time)
