"""
Segmentation pipelines.

A Pipeline is the fixed stage composition for one target class, built
once from an immutable PipelineConfig:

    resize → blur → threshold → [apply_mask(blurred) → refinement threshold]

The final mask is the sole input to the blob locator. A Pipeline holds no
per-frame state; intermediates come from the caller's FrameBufferPool, so
one instance can be run from several workers at once as long as each
passes its own pool.
"""
from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

import numpy as np

from core.buffers import FrameBufferPool
from core.stages import (
    BlurKind, ColorSpace, Interpolation,
    resize, blur, color_range_threshold, apply_mask,
)
from utils.failures import ConfigError

Range = Tuple[float, float]


@dataclass(frozen=True)
class ColorThreshold:
    """One colour-range test; ranges are in the colour space's argument order."""
    color_space: ColorSpace
    ch1: Range
    ch2: Range
    ch3: Range

    @property
    def ranges(self) -> Tuple[Range, Range, Range]:
        return (self.ch1, self.ch2, self.ch3)


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable per-target pipeline parameters."""
    name: str
    resize_width: int
    resize_height: int
    interpolation: Interpolation
    blur_kind: BlurKind
    blur_radius: float
    threshold: ColorThreshold
    refinement: Optional[ColorThreshold] = None

    def __post_init__(self):
        if self.resize_width <= 0 or self.resize_height <= 0:
            raise ConfigError(
                f"pipeline '{self.name}': resize size must be positive, "
                f"got {self.resize_width}x{self.resize_height}"
            )
        if self.blur_radius < 0:
            raise ConfigError(f"pipeline '{self.name}': blur radius must be non-negative")

    def replace(self, **changes) -> "PipelineConfig":
        return replace(self, **changes)


@dataclass(frozen=True)
class PipelineOutput:
    """Every intermediate of one run; ``output`` feeds the blob locator."""
    resized: np.ndarray
    blurred: np.ndarray
    mask: np.ndarray
    masked: Optional[np.ndarray]
    output: np.ndarray


class Pipeline:
    """Runs the stage composition described by a PipelineConfig."""

    def __init__(self, config: PipelineConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def frame_width(self) -> int:
        """Width of the image the locator measures (the resize target)."""
        return self.config.resize_width

    def _buffer(self, buffers: Optional[FrameBufferPool], stage: str, shape) -> Optional[np.ndarray]:
        if buffers is None:
            return None
        return buffers.acquire(f"{self.config.name}.{stage}", shape)

    def run(self, frame: np.ndarray, buffers: Optional[FrameBufferPool] = None) -> PipelineOutput:
        """
        Process one BGR frame.

        Args:
            frame: Raw 3-channel BGR frame from the source.
            buffers: Optional pool to draw intermediates from.

        Returns:
            PipelineOutput whose ``output`` is a single-channel mask.
        """
        cfg = self.config
        w, h = cfg.resize_width, cfg.resize_height
        color_shape = (h, w) + frame.shape[2:]

        resized = resize(frame, w, h, cfg.interpolation,
                         dst=self._buffer(buffers, "resized", color_shape))
        blurred = blur(resized, cfg.blur_kind, cfg.blur_radius,
                       dst=self._buffer(buffers, "blurred", color_shape))

        t = cfg.threshold
        mask = color_range_threshold(
            blurred, t.color_space, *t.ranges,
            dst=self._buffer(buffers, "mask", (h, w)),
            converted=self._buffer(buffers, "converted", color_shape),
        )

        masked = None
        output = mask
        if cfg.refinement is not None:
            r = cfg.refinement
            masked = apply_mask(blurred, mask, dst=self._buffer(buffers, "masked", color_shape))
            output = color_range_threshold(
                masked, r.color_space, *r.ranges,
                dst=self._buffer(buffers, "refined", (h, w)),
                converted=self._buffer(buffers, "converted", color_shape),
            )

        return PipelineOutput(
            resized=resized,
            blurred=blurred,
            mask=mask,
            masked=masked,
            output=output,
        )

    def __repr__(self) -> str:
        return f"<Pipeline {self.config.name!r} {self.config.resize_width}x{self.config.resize_height}>"


# ─── Built-in pipelines (tuned against field lighting) ───────────────────

CARGO_PIPELINE = PipelineConfig(
    name="cargo",
    resize_width=240,
    resize_height=180,
    interpolation=Interpolation.CUBIC,
    blur_kind=BlurKind.BOX,
    blur_radius=12.612612612612613,
    threshold=ColorThreshold(
        ColorSpace.HSL,
        (0.0, 50.98976109215017),                    # hue
        (188.03956834532374, 255.0),                 # saturation
        (98.60611510791367, 204.95733788395904),     # luminance
    ),
    refinement=ColorThreshold(
        ColorSpace.RGB,
        (206.38489208633092, 255.0),                 # red
        (64.20863309352518, 215.83617747440275),     # green
        (11.465827338129495, 141.86006825938566),    # blue
    ),
)

HATCH_PIPELINE = PipelineConfig(
    name="hatch",
    resize_width=240,
    resize_height=180,
    interpolation=Interpolation.CUBIC,
    blur_kind=BlurKind.GAUSSIAN,
    blur_radius=1.801801801801803,
    threshold=ColorThreshold(
        ColorSpace.HSV,
        (8.093525179856115, 55.597269624573386),     # hue
        (84.84712230215827, 255.0),                  # saturation
        (158.22841726618705, 220.1877133105802),     # value
    ),
)

PIPELINE_CATALOG: Dict[str, PipelineConfig] = {
    CARGO_PIPELINE.name: CARGO_PIPELINE,
    HATCH_PIPELINE.name: HATCH_PIPELINE,
}


def get_pipeline_config(name: str) -> PipelineConfig:
    try:
        return PIPELINE_CATALOG[name]
    except KeyError:
        raise ConfigError(
            f"unknown pipeline '{name}' (known: {', '.join(sorted(PIPELINE_CATALOG))})"
        ) from None
