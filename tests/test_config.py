import json

import pytest

from core.pipeline import CARGO_PIPELINE, HATCH_PIPELINE
from core.stages import BlurKind, ColorSpace
from utils.config import Config, build_node_config, pipeline_from_overrides
from utils.constants import CONFIGS_DIR, DEFAULT_TELEMETRY_URL
from utils.failures import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("VISION_TEAM", raising=False)
    monkeypatch.delenv("VISION_TELEMETRY_URL", raising=False)


def _config(tmp_path, data):
    return Config(str(tmp_path), data=data)


def _camera(**overrides):
    camera = {"name": "front", "path": "/dev/video0", "width": 320, "height": 240}
    camera.update(overrides)
    return camera


def test_directory_files_are_deep_merged(tmp_path):
    (tmp_path / "a.json").write_text(json.dumps({"streams": {"width": 160, "height": 120}}))
    (tmp_path / "b.json").write_text(json.dumps({"streams": {"height": 90}, "team": 254}))

    config = Config(str(tmp_path))

    assert config.get("streams.width") == 160
    assert config.get("streams.height") == 90
    assert config.get_int("team") == 254
    assert config.get("streams.missing", "x") == "x"


def test_single_file_path_is_accepted(tmp_path):
    path = tmp_path / "frc.json"
    path.write_text(json.dumps({"team": 1234, "cameras": []}))
    assert Config(str(path)).get("team") == 1234


def test_malformed_json_is_a_config_error(tmp_path):
    (tmp_path / "broken.json").write_text("{ not json")
    with pytest.raises(ConfigError):
        Config(str(tmp_path))


def test_non_object_json_is_a_config_error(tmp_path):
    (tmp_path / "list.json").write_text("[1, 2]")
    with pytest.raises(ConfigError):
        Config(str(tmp_path))


def test_missing_explicit_path_is_a_config_error(tmp_path):
    with pytest.raises(ConfigError):
        Config(str(tmp_path / "nope"))


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("VISION_TEAM", "971")
    monkeypatch.setenv("VISION_TELEMETRY_URL", "http://10.9.71.2:5810")

    node = build_node_config(_config(tmp_path, {"cameras": [], "team": 1}))

    assert node.team == 971
    assert node.telemetry_url == "http://10.9.71.2:5810"


def test_build_node_config(tmp_path):
    node = build_node_config(_config(tmp_path, {
        "team": "1234",
        "cameras": [
            _camera(pipelines=["cargo", "hatch"], roi=[40, 30, 240, 180],
                    properties=[{"name": "gain", "value": 10}, {"bogus": 1}]),
            _camera(name="back", path="1"),
        ],
    }))

    assert node.team == 1234
    assert [s.name for s in node.sources] == ["front", "back"]
    front = node.source("front")
    assert [b.target.name for b in front.bindings] == ["cargo", "hatch"]
    assert front.bindings[0].pipeline is CARGO_PIPELINE
    assert front.region == (40, 30, 240, 180)
    assert front.properties == (("gain", 10),)
    assert not node.source("back").has_pipelines
    assert node.source("back").region == (0, 0, 320, 240)
    assert (node.stream.width, node.stream.height, node.stream.frame_rate_divider) == (320, 240, 2)
    assert node.telemetry_enabled
    assert node.telemetry_url == DEFAULT_TELEMETRY_URL


def test_node_config_is_frozen(tmp_path):
    node = build_node_config(_config(tmp_path, {"cameras": [_camera()]}))
    with pytest.raises(AttributeError):
        node.sources[0].width = 640


def test_target_overrides(tmp_path):
    node = build_node_config(_config(tmp_path, {
        "cameras": [_camera(pipelines=["hatch"])],
        "targets": {"hatch": {
            "physical_width_m": 0.5,
            "pipeline": {"blur_kind": "box", "blur_radius": 3},
        }},
    }))

    binding = node.sources[0].bindings[0]
    assert binding.target.physical_width_m == 0.5
    assert binding.target.fov_deg == 60.0
    assert binding.pipeline.blur_kind is BlurKind.BOX
    assert binding.pipeline.blur_radius == 3.0
    assert binding.pipeline.threshold == HATCH_PIPELINE.threshold


def test_pipeline_threshold_override():
    config = pipeline_from_overrides(HATCH_PIPELINE, {
        "threshold": {"color_space": "RGB", "ranges": [[0, 10], [20, 30], [40, 50]]},
        "refinement": {"color_space": "hsv", "ranges": [[0, 1], [0, 1], [0, 1]]},
    })
    assert config.threshold.color_space is ColorSpace.RGB
    assert config.threshold.ch2 == (20.0, 30.0)
    assert config.refinement.color_space is ColorSpace.HSV


@pytest.mark.parametrize("data", [
    {},
    {"cameras": {"name": "front"}},
    {"cameras": [{"path": "/dev/video0"}]},
    {"cameras": [{"name": "front"}]},
    {"cameras": [_camera(width=0)]},
    {"cameras": [_camera(fps="fast")]},
    {"cameras": [_camera(pipelines=["tote"])]},
    {"cameras": [_camera(pipelines=["hatch", "hatch"])]},
    {"cameras": [_camera(roi=[300, 0, 100, 100])]},
    {"cameras": [_camera(roi=[0, 0, 10])]},
    {"cameras": [_camera(), _camera()]},
    {"cameras": [], "team": "blue"},
    {"cameras": [], "streams": {"frame_rate_divider": 0}},
    {"cameras": [_camera(pipelines=["hatch"])],
     "targets": {"hatch": {"pipeline": {"blur_kind": "sharpen"}}}},
    {"cameras": [_camera(pipelines=["hatch"])],
     "targets": {"hatch": {"pipeline": {"threshold": {"color_space": "hsv", "ranges": [[0, 1]]}}}}},
    {"cameras": [_camera(pipelines=["hatch"])], "targets": {"hatch": {"fov_deg": "wide"}}},
])
def test_invalid_configuration_is_rejected(tmp_path, data):
    with pytest.raises(ConfigError):
        build_node_config(_config(tmp_path, data))


def test_shipped_configs_are_valid():
    node = build_node_config(Config())
    assert node.sources
    assert any(source.has_pipelines for source in node.sources)


def test_shipped_configs_only_use_known_keys():
    known = {"team", "cameras", "streams", "telemetry", "targets", "failures", "logging"}
    for path in CONFIGS_DIR.glob("*.json"):
        data = json.loads(path.read_text())
        assert set(data) <= known, path.name
