"""
Configuration management for the vision node.

Two layers:

* ``Config`` merges every JSON file of the configs directory (plus a few
  environment overrides) into one nested dict with dotted-key accessors.
* ``build_node_config`` validates that dict once at startup and freezes it
  into a ``NodeConfig`` handed by reference to every worker. Nothing reads
  the raw dict after startup.

Camera entries keep the keys of the roboRIO-style ``frc.json`` so existing
files drop in unchanged::

    {
        "team": 1234,
        "cameras": [
            {
                "name": "front",
                "path": "/dev/video0",
                "pixel format": "MJPEG",        // optional
                "width": 320, "height": 240,    // optional
                "fps": 30,                      // optional
                "brightness": 50,               // optional
                "white balance": "auto",        // optional: "auto" or value
                "exposure": "auto",             // optional: "auto" or value
                "properties": [{"name": ..., "value": ...}],
                "roi": [x, y, w, h],            // optional crop for the cropped stream
                "pipelines": ["cargo", "hatch"] // optional target classes
            }
        ],
        "targets": {"cargo": {"physical_width_m": 0.33, "pipeline": {"blur_radius": 8}}},
        "streams": {"width": 320, "height": 240, "frame_rate_divider": 2},
        "telemetry": {"enabled": true, "server_url": "http://10.12.34.2:5810"}
    }
"""
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from core.pipeline import PipelineConfig, ColorThreshold, get_pipeline_config
from core.stages import BlurKind, ColorSpace, Interpolation
from core.targets import TargetConstants, get_target
from utils.constants import (
    CONFIGS_DIR, DEFAULT_CAMERA_FPS, DEFAULT_FRAME_RATE_DIVIDER,
    DEFAULT_STREAM_HEIGHT, DEFAULT_STREAM_WIDTH, DEFAULT_TELEMETRY_URL,
)
from utils.failures import ConfigError


class Config:
    """Configuration manager that merges multiple domain-specific JSON files."""

    def __init__(self, configs_dir: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        """
        Args:
            configs_dir: Directory of ``*.json`` files (defaults to <repo>/configs).
                         A path to a single JSON file is accepted too.
            data: Optional dict merged after the files (tests, CLI overrides).
        """
        self.config: Dict[str, Any] = {}

        path = Path(configs_dir) if configs_dir else CONFIGS_DIR
        if path.is_file():
            self.load_from_file(str(path))
        elif path.is_dir():
            for config_file in sorted(path.glob("*.json")):
                self.load_from_file(str(config_file))
        elif configs_dir:
            raise ConfigError(f"config path not found: {path}")

        if data:
            self._merge_config(data)

        self._load_from_env()

    def _load_from_env(self):
        if os.environ.get('VISION_TELEMETRY_URL'):
            self.config.setdefault('telemetry', {})['server_url'] = os.environ['VISION_TELEMETRY_URL']
        if os.environ.get('VISION_TEAM'):
            self.config['team'] = os.environ['VISION_TEAM']

    def load_from_file(self, path: str):
        """Merge one JSON file; malformed files abort startup."""
        try:
            with open(path, 'r') as f:
                user_config = json.load(f)
        except OSError as e:
            raise ConfigError(f"could not open '{path}': {e}") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"config error in '{path}': line {e.lineno}: {e.msg}") from e

        if not isinstance(user_config, dict):
            raise ConfigError(f"config error in '{path}': must be JSON object")
        self._merge_config(user_config)

    def _merge_config(self, user_config: Dict[str, Any]):
        """Merge user config with what is loaded so far, recursively."""
        def update(d, u):
            for k, v in u.items():
                if isinstance(v, dict):
                    d[k] = update(d.get(k, {}) if isinstance(d.get(k), dict) else {}, v)
                else:
                    d[k] = v
            return d

        update(self.config, user_config)

    def get_int(self, key: str, default: int = 0) -> int:
        val = self.get(key, default)
        try:
            return int(val)
        except (ValueError, TypeError):
            return default

    def get_float(self, key: str, default: float = 0.0) -> float:
        val = self.get(key, default)
        try:
            return float(val)
        except (ValueError, TypeError):
            return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        val = self.get(key, default)
        if isinstance(val, bool):
            return val
        if isinstance(val, str):
            return val.lower() in ('true', '1', 'yes', 'on')
        return bool(val)

    def get(self, key: str, default: Any = None) -> Any:
        value = self.config
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value


# ─── Immutable startup configuration ─────────────────────────────────────

@dataclass(frozen=True)
class TargetBinding:
    """One (pipeline, target) pair run on every frame of a source."""
    pipeline: PipelineConfig
    target: TargetConstants


@dataclass(frozen=True)
class StreamSettings:
    width: int = DEFAULT_STREAM_WIDTH
    height: int = DEFAULT_STREAM_HEIGHT
    frame_rate_divider: int = DEFAULT_FRAME_RATE_DIVIDER


@dataclass(frozen=True)
class SourceConfig:
    name: str
    path: str
    width: int = 320
    height: int = 240
    fps: int = DEFAULT_CAMERA_FPS
    pixel_format: Optional[str] = None
    brightness: Optional[int] = None
    exposure: Optional[Any] = None
    white_balance: Optional[Any] = None
    properties: Tuple[Tuple[str, Any], ...] = ()
    roi: Optional[Tuple[int, int, int, int]] = None
    bindings: Tuple[TargetBinding, ...] = ()

    @property
    def has_pipelines(self) -> bool:
        return bool(self.bindings)

    @property
    def region(self) -> Tuple[int, int, int, int]:
        """Crop rectangle (x, y, w, h); the whole frame when none is configured."""
        return self.roi if self.roi is not None else (0, 0, self.width, self.height)


@dataclass(frozen=True)
class NodeConfig:
    team: Optional[int] = None
    sources: Tuple[SourceConfig, ...] = ()
    stream: StreamSettings = field(default_factory=StreamSettings)
    telemetry_enabled: bool = True
    telemetry_url: str = DEFAULT_TELEMETRY_URL
    failures: Dict[str, Any] = field(default_factory=dict)

    def source(self, name: str) -> SourceConfig:
        for src in self.sources:
            if src.name == name:
                return src
        raise KeyError(name)


def _positive_int(value: Any, what: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{what} must be an integer, got {value!r}") from None
    if number <= 0:
        raise ConfigError(f"{what} must be positive, got {number}")
    return number


def _enum(enum_cls, value: Any, what: str):
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        choices = ", ".join(m.value for m in enum_cls)
        raise ConfigError(f"{what}: unknown value {value!r} (expected one of {choices})") from None


def _threshold_from_dict(data: Dict[str, Any], what: str) -> ColorThreshold:
    try:
        ranges = data['ranges']
        if len(ranges) != 3:
            raise ConfigError(f"{what}: 'ranges' needs exactly three [min, max] pairs")
        pairs = tuple((float(lo), float(hi)) for lo, hi in ranges)
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"{what}: could not read threshold ranges: {e}") from None
    return ColorThreshold(_enum(ColorSpace, data.get('color_space'), f"{what}.color_space"), *pairs)


def pipeline_from_overrides(base: PipelineConfig, overrides: Dict[str, Any]) -> PipelineConfig:
    """Apply a ``targets.<name>.pipeline`` override block to a catalogue pipeline."""
    if not overrides:
        return base
    what = f"targets.{base.name}.pipeline"
    changes: Dict[str, Any] = {}
    if 'resize_width' in overrides:
        changes['resize_width'] = _positive_int(overrides['resize_width'], f"{what}.resize_width")
    if 'resize_height' in overrides:
        changes['resize_height'] = _positive_int(overrides['resize_height'], f"{what}.resize_height")
    if 'interpolation' in overrides:
        changes['interpolation'] = _enum(Interpolation, overrides['interpolation'], f"{what}.interpolation")
    if 'blur_kind' in overrides:
        changes['blur_kind'] = _enum(BlurKind, overrides['blur_kind'], f"{what}.blur_kind")
    if 'blur_radius' in overrides:
        try:
            changes['blur_radius'] = float(overrides['blur_radius'])
        except (TypeError, ValueError):
            raise ConfigError(f"{what}.blur_radius must be a number") from None
    if 'threshold' in overrides:
        changes['threshold'] = _threshold_from_dict(overrides['threshold'], f"{what}.threshold")
    if 'refinement' in overrides:
        refinement = overrides['refinement']
        changes['refinement'] = (
            None if refinement is None
            else _threshold_from_dict(refinement, f"{what}.refinement")
        )
    return base.replace(**changes)


def _binding(name: str, targets_conf: Dict[str, Any]) -> TargetBinding:
    overrides = targets_conf.get(name, {}) or {}
    pipeline = pipeline_from_overrides(get_pipeline_config(name), overrides.get('pipeline', {}))
    target = get_target(name)
    target_changes = {}
    for key in ('physical_width_m', 'fov_deg'):
        if key in overrides:
            try:
                target_changes[key] = float(overrides[key])
            except (TypeError, ValueError):
                raise ConfigError(f"targets.{name}.{key} must be a number") from None
    if target_changes:
        target = target.replace(**target_changes)
    return TargetBinding(pipeline=pipeline, target=target)


def _source_from_dict(camera: Dict[str, Any], targets_conf: Dict[str, Any]) -> SourceConfig:
    if not isinstance(camera, dict):
        raise ConfigError(f"camera entry must be an object, got {camera!r}")
    name = camera.get('name')
    if not name:
        raise ConfigError("could not read camera name")
    path = camera.get('path')
    if not path:
        raise ConfigError(f"camera '{name}': could not read path")

    width = _positive_int(camera.get('width', 320), f"camera '{name}' width")
    height = _positive_int(camera.get('height', 240), f"camera '{name}' height")
    fps = _positive_int(camera.get('fps', DEFAULT_CAMERA_FPS), f"camera '{name}' fps")

    roi = camera.get('roi')
    if roi is not None:
        try:
            x, y, w, h = (int(v) for v in roi)
        except (TypeError, ValueError):
            raise ConfigError(f"camera '{name}': roi must be [x, y, w, h]") from None
        if x < 0 or y < 0 or w <= 0 or h <= 0 or x + w > width or y + h > height:
            raise ConfigError(f"camera '{name}': roi {roi} lies outside the {width}x{height} frame")
        roi = (x, y, w, h)

    properties = tuple(
        (prop['name'], prop['value'])
        for prop in camera.get('properties', [])
        if isinstance(prop, dict) and 'name' in prop and 'value' in prop
    )

    names = camera.get('pipelines', []) or []
    if len(set(names)) != len(names):
        raise ConfigError(f"camera '{name}': duplicate pipelines {names}")
    bindings = tuple(_binding(target_name, targets_conf) for target_name in names)

    return SourceConfig(
        name=str(name),
        path=str(path),
        width=width,
        height=height,
        fps=fps,
        pixel_format=camera.get('pixel format'),
        brightness=camera.get('brightness'),
        exposure=camera.get('exposure'),
        white_balance=camera.get('white balance'),
        properties=properties,
        roi=roi,
        bindings=bindings,
    )


def build_node_config(config: Config) -> NodeConfig:
    """
    Validate the merged configuration and freeze it.

    Raises:
        ConfigError: on any missing or malformed entry; startup must abort.
    """
    cameras = config.get('cameras')
    if not isinstance(cameras, list):
        raise ConfigError("could not read cameras: 'cameras' must be a list")

    team = config.get('team')
    if team is not None:
        try:
            team = int(team)
        except (TypeError, ValueError):
            raise ConfigError(f"could not read team number: {team!r}") from None

    targets_conf = config.get('targets', {}) or {}
    sources = tuple(_source_from_dict(camera, targets_conf) for camera in cameras)

    names = [src.name for src in sources]
    if len(set(names)) != len(names):
        raise ConfigError(f"camera names must be unique, got {names}")

    stream = StreamSettings(
        width=_positive_int(config.get('streams.width', DEFAULT_STREAM_WIDTH), "streams.width"),
        height=_positive_int(config.get('streams.height', DEFAULT_STREAM_HEIGHT), "streams.height"),
        frame_rate_divider=_positive_int(
            config.get('streams.frame_rate_divider', DEFAULT_FRAME_RATE_DIVIDER),
            "streams.frame_rate_divider",
        ),
    )

    return NodeConfig(
        team=team,
        sources=sources,
        stream=stream,
        telemetry_enabled=config.get_bool('telemetry.enabled', True),
        telemetry_url=str(config.get('telemetry.server_url', DEFAULT_TELEMETRY_URL)),
        failures=dict(config.get('failures', {}) or {}),
    )
