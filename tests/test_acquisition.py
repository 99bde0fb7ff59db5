import time
from threading import Event

import numpy as np
import pytest

from core.acquisition import AcquisitionState, AcquisitionWorker, WorkerSinks
from core.events import CaptureFault, PipelineFault, SinkFault, TelemetryFault
from core.pipeline import HATCH_PIPELINE
from core.targets import HATCH
from utils.config import SourceConfig, StreamSettings, TargetBinding

from tests.conftest import HATCH_BGR, FakeSource, RecordingSink, RecordingTelemetry, make_frame

HATCH_FIELDS = 12


def _source_config(with_pipeline=True, roi=None):
    bindings = (TargetBinding(HATCH_PIPELINE, HATCH),) if with_pipeline else ()
    return SourceConfig(name="front", path="/dev/video0", width=320, height=240,
                        roi=roi, bindings=bindings)


def _worker(source, bus, telemetry, divider=1, with_pipeline=True, processed_sink=None,
            cropped=None, crosshair=None, roi=None, stop_event=None, restart_delay=0):
    sinks = WorkerSinks(
        cropped=cropped or RecordingSink(),
        crosshair=crosshair or RecordingSink(),
        processed={"hatch": processed_sink or RecordingSink()} if with_pipeline else {},
    )
    return AcquisitionWorker(
        source_config=_source_config(with_pipeline, roi),
        source=source,
        sinks=sinks,
        telemetry=telemetry,
        bus=bus,
        stop_event=stop_event or Event(),
        stream=StreamSettings(width=160, height=120, frame_rate_divider=divider),
        retry_delay=0,
        restart_delay=restart_delay,
    )


def _events(bus, event_type):
    seen = []
    bus.subscribe(event_type, seen.append)
    return seen


@pytest.fixture
def target_frame():
    return make_frame(rect=(80, 60, 240, 180), color=HATCH_BGR)


def test_normal_cycle_publishes_every_field(bus, telemetry, target_frame):
    worker = _worker(FakeSource([target_frame]), bus, telemetry)

    results = worker.run_cycle()

    assert results["hatch"].valid
    fields = telemetry.fields("hatch")
    assert len(telemetry.calls) == HATCH_FIELDS
    assert fields["valid"] == 1.0
    assert fields["xMin"] == float(results["hatch"].x_min)
    assert worker.state is AcquisitionState.ACQUIRING
    assert worker.frame_count == 1


def test_normal_cycle_pushes_display_and_processed_frames(bus, telemetry, target_frame):
    processed = RecordingSink()
    worker = _worker(FakeSource([target_frame]), bus, telemetry, processed_sink=processed)

    worker.run_cycle()

    assert worker.sinks.cropped.frames[0].shape == (120, 160, 3)
    assert worker.sinks.crosshair.frames[0].shape == (120, 160, 3)
    assert processed.frames[0].shape == (180, 240)


def test_crosshair_is_drawn_on_the_crosshair_stream_only(bus, telemetry):
    worker = _worker(FakeSource([make_frame()]), bus, telemetry)

    worker.run_cycle()

    assert worker.sinks.crosshair.frames[0].any()
    assert not worker.sinks.cropped.frames[0].any()


def test_cropped_stream_shows_region_of_interest(bus, telemetry):
    frame = make_frame()
    frame[:, 160:] = 255  # right half white
    worker = _worker(FakeSource([frame]), bus, telemetry, roi=(160, 0, 160, 240))

    worker.run_cycle()

    assert np.all(worker.sinks.cropped.frames[0] == 255)


def test_capture_fault_notifies_once_and_publishes_nothing(bus, telemetry):
    faults = _events(bus, CaptureFault)
    worker = _worker(FakeSource([None], error="camera unplugged"), bus, telemetry)

    assert worker.run_cycle() is None

    assert worker.sinks.crosshair.errors == ["camera unplugged"]
    assert worker.sinks.cropped.errors == []
    assert telemetry.calls == []
    assert worker.sinks.crosshair.frames == []
    assert [f.message for f in faults] == ["camera unplugged"]
    assert worker.fault_count == 1


def test_worker_recovers_after_capture_fault(bus, telemetry, target_frame):
    worker = _worker(FakeSource([None, target_frame]), bus, telemetry)

    assert worker.run_cycle() is None
    assert worker.run_cycle()["hatch"].valid
    assert len(telemetry.calls) == HATCH_FIELDS


def test_frame_rate_divider_gates_display_but_not_telemetry(bus, telemetry, target_frame):
    worker = _worker(FakeSource([target_frame]), bus, telemetry, divider=2)

    for _ in range(4):
        worker.run_cycle()

    assert len(worker.sinks.crosshair.frames) == 2
    assert len(worker.sinks.cropped.frames) == 2
    assert len(worker.sinks.processed["hatch"].frames) == 2
    assert len(telemetry.calls) == 4 * HATCH_FIELDS


def test_empty_scene_publishes_invalid_result(bus, telemetry):
    worker = _worker(FakeSource([make_frame()]), bus, telemetry)

    assert not worker.run_cycle()["hatch"].valid
    assert telemetry.fields("hatch")["valid"] == 0.0


def test_source_without_pipelines_only_streams(bus, telemetry):
    worker = _worker(FakeSource([make_frame()]), bus, telemetry, with_pipeline=False)

    assert worker.run_cycle() == {}
    assert len(worker.sinks.crosshair.frames) == 1
    assert telemetry.calls == []


def test_failing_sink_does_not_stop_the_cycle(bus, telemetry, target_frame):
    faults = _events(bus, SinkFault)
    worker = _worker(FakeSource([target_frame]), bus, telemetry,
                     cropped=RecordingSink(fail=True))

    results = worker.run_cycle()

    assert results["hatch"].valid
    assert [f.stream for f in faults] == ["cropped"]
    assert len(worker.sinks.crosshair.frames) == 1
    assert len(telemetry.calls) == HATCH_FIELDS


def test_failing_telemetry_is_reported_not_raised(bus, target_frame):
    faults = _events(bus, TelemetryFault)
    worker = _worker(FakeSource([target_frame]), bus, RecordingTelemetry(fail=True))

    assert worker.run_cycle()["hatch"].valid
    assert [f.namespace for f in faults] == ["hatch"]


def test_pipeline_error_is_isolated(bus, telemetry):
    faults = _events(bus, PipelineFault)
    gray = np.zeros((240, 320), dtype=np.uint8)  # not a colour frame
    worker = _worker(FakeSource([gray]), bus, telemetry)

    assert worker.run_cycle() == {}
    assert [(f.source, f.target) for f in faults] == [("front", "hatch")]
    assert telemetry.calls == []


def test_buffers_are_reused_between_cycles(bus, telemetry, target_frame):
    worker = _worker(FakeSource([target_frame]), bus, telemetry)

    worker.run_cycle()
    allocations = worker.buffers.allocations
    for _ in range(3):
        worker.run_cycle()

    assert worker.buffers.allocations == allocations


def test_source_start_failure_is_reported(bus, telemetry):
    stop = Event()
    faults = _events(bus, CaptureFault)
    bus.subscribe(CaptureFault, lambda event: stop.set())
    source = FakeSource([], start_ok=False, error="no such device")
    worker = _worker(source, bus, telemetry, stop_event=stop)

    worker.run()

    assert worker.ready.is_set()
    assert not worker.source_ok
    assert worker.sinks.crosshair.errors == ["no such device"]
    assert len(faults) == 1
    assert source.grabs == 0


def test_stop_event_ends_the_thread(bus, telemetry, target_frame):
    stop = Event()
    source = FakeSource([target_frame])
    worker = _worker(source, bus, telemetry, stop_event=stop)

    worker.start()
    assert worker.ready.wait(timeout=5)
    stop.set()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert source.stopped
    assert len(worker.buffers) == 0


def test_stop_before_start_never_grabs(bus, telemetry, target_frame):
    stop = Event()
    stop.set()
    source = FakeSource([target_frame])
    worker = _worker(source, bus, telemetry, stop_event=stop)

    worker.run()

    assert source.grabs == 0
    assert source.stopped


def test_source_that_fails_to_start_is_retried(bus, telemetry, target_frame):
    stop = Event()
    faults = _events(bus, CaptureFault)
    source = FakeSource([target_frame], start_failures=2)
    worker = _worker(source, bus, telemetry, stop_event=stop)

    worker.start()
    deadline = time.monotonic() + 5
    while not telemetry.calls and time.monotonic() < deadline:
        time.sleep(0.01)
    stop.set()
    worker.join(timeout=5)

    assert not worker.is_alive()
    assert source.starts == 3
    assert worker.source_ok
    assert telemetry.fields("hatch")["valid"] == 1.0
    assert worker.sinks.crosshair.errors == ["camera unplugged"] * 2
    assert len(faults) == 2
    assert worker.fault_count == 2
