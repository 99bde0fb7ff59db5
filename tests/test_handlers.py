import numpy as np
import pytest

from core.protocols import FrameSource, TelemetryStore, ViewerSink
from Handlers.Camera_Handler import CameraHandler
from Handlers.Overlay_Handler import OverlayHandler
from Handlers.Stream_Handler import FrameStream
from Handlers.Telemetry_Handler import SocketTelemetryHandler, TelemetryTable
from Handlers.Video_Input_Handler import VideoInputHandler
from utils.config import SourceConfig


# ── Protocol conformance ─────────────────────────────────────────────────

def test_adapters_implement_their_protocols():
    source_config = SourceConfig(name="front", path="/dev/video0")
    assert isinstance(CameraHandler(source_config), FrameSource)
    assert isinstance(VideoInputHandler("clip.mp4"), FrameSource)
    assert isinstance(FrameStream("front.crosshair"), ViewerSink)
    assert isinstance(TelemetryTable(), TelemetryStore)
    assert isinstance(SocketTelemetryHandler("http://localhost:5810"), TelemetryStore)


# ── FrameStream ──────────────────────────────────────────────────────────

def test_stream_copies_pushed_frames():
    stream = FrameStream("front.cropped")
    frame = np.zeros((4, 4, 3), dtype=np.uint8)

    stream.push_frame(frame)
    frame[...] = 255

    assert not stream.latest().any()


def test_stream_drops_when_full_and_returns_latest():
    stream = FrameStream("front.cropped", maxsize=2)
    for value in (1, 2, 3):
        stream.push_frame(np.full((2, 2), value, dtype=np.uint8))

    status = stream.status()
    assert (status["pushed"], status["dropped"]) == (2, 1)
    assert stream.latest()[0, 0] == 2
    assert stream.latest() is None


def test_stream_error_is_cleared_by_next_frame():
    stream = FrameStream("front.crosshair")

    stream.notify_error("camera unplugged")
    stream.notify_error("camera unplugged")
    assert stream.status()["last_error"] == "camera unplugged"
    assert stream.status()["errors"] == 2

    stream.push_frame(np.zeros((2, 2), dtype=np.uint8))
    assert stream.status()["last_error"] is None


# ── Telemetry ────────────────────────────────────────────────────────────

def test_table_keeps_latest_value_per_field():
    table = TelemetryTable()
    table.publish("cargo", "area", 10.0)
    table.publish("cargo", "area", 12.0)
    table.publish("hatch", "valid", 0.0)

    assert table.get("cargo", "area") == 12.0
    assert table.get("cargo", "missing", -1.0) == -1.0
    assert table.namespace("hatch") == {"valid": 0.0}
    assert len(table) == 2


def test_table_snapshot_is_detached():
    table = TelemetryTable()
    table.publish("cargo", "area", 1.0)

    snapshot = table.snapshot()
    snapshot["cargo"]["area"] = 99.0

    assert table.get("cargo", "area") == 1.0


def test_socket_handler_buffers_while_disconnected():
    handler = SocketTelemetryHandler("http://localhost:5810", team=1234)

    handler.publish("cargo", "distance", 2.5)

    assert not handler.connected
    assert handler.table.get("cargo", "distance") == 2.5


def test_socket_handler_emits_when_connected(monkeypatch):
    handler = SocketTelemetryHandler("http://localhost:5810")
    sent = []
    monkeypatch.setattr(handler.sio, "emit", lambda event, data: sent.append((event, data)))
    handler.connected = True

    handler.publish("hatch", "xMax", 42.0)

    assert sent == [("telemetry", {"namespace": "hatch", "field": "xMax", "value": 42.0})]


def test_socket_handler_replays_snapshot(monkeypatch):
    handler = SocketTelemetryHandler("http://localhost:5810", team=1234)
    handler.publish("cargo", "valid", 1.0)
    sent = []
    monkeypatch.setattr(handler.sio, "emit", lambda event, data: sent.append((event, data)))

    handler._replay()

    assert sent == [("telemetry_snapshot", {"team": 1234, "values": {"cargo": {"valid": 1.0}}})]


# ── Overlay ──────────────────────────────────────────────────────────────

def test_crop_is_clipped_to_frame():
    frame = np.zeros((240, 320, 3), dtype=np.uint8)
    overlay = OverlayHandler(160, 120)

    assert overlay.crop(frame, (40, 30, 240, 180)).shape == (180, 240, 3)
    assert overlay.crop(frame, (300, 200, 100, 100)).shape == (40, 20, 3)


def test_crosshair_leaves_centre_gap():
    overlay = OverlayHandler(160, 120, color=(0, 255, 0), gap=6)
    image = overlay.draw_crosshair(np.zeros((120, 160, 3), dtype=np.uint8))

    assert image[60, 10].tolist() == [0, 255, 0]
    assert image[10, 80].tolist() == [0, 255, 0]
    assert not image[60, 80].any()


def test_scale_hits_stream_size():
    overlay = OverlayHandler(160, 120)
    assert overlay.scale(np.zeros((480, 640, 3), dtype=np.uint8)).shape == (120, 160, 3)


# ── Video source ─────────────────────────────────────────────────────────

def test_missing_video_file_fails_to_start(tmp_path):
    source = VideoInputHandler(str(tmp_path / "missing.mp4"))

    assert not source.start()
    assert "not found" in source.get_error()
    assert source.grab_frame() == (None, False)


@pytest.mark.parametrize("path,expected", [("0", 0), ("/dev/video2", "/dev/video2")])
def test_camera_device_path(path, expected):
    assert CameraHandler(SourceConfig(name="c", path=path))._device() == expected
