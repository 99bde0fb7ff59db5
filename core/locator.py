"""
Blob locator: turns a pipeline mask into geometric and physical estimates.

Single pass, bounding box only. Any pixel whose designated channel exceeds
ACTIVITY_THRESHOLD widens the running box. Two long-standing quirks are
kept for compatibility with dashboards that consume these numbers:

* ``area`` is the bounding-rectangle area ``(x_max - x_min) * (y_max - y_min)``,
  not a pixel count.
* ``centroid_offset_x`` / ``centroid_offset_y`` are the box *extents*
  (``max - min``), not the midpoint.
"""
import math
from dataclasses import dataclass, asdict
from typing import Dict

import numpy as np

from core.targets import TargetConstants
from utils.failures import StageError

ACTIVITY_THRESHOLD = 10


@dataclass(frozen=True)
class BlobResult:
    x_min: int
    x_max: int
    y_min: int
    y_max: int
    centroid_offset_x: float
    centroid_offset_y: float
    area: float
    normalized_offset: float
    estimated_pixel_width: float
    estimated_distance: float
    estimated_yaw_deg: float
    valid: bool

    def as_telemetry(self) -> Dict[str, float]:
        """Named numeric fields as published to the telemetry store."""
        return {
            "xMin": float(self.x_min),
            "xMax": float(self.x_max),
            "yMin": float(self.y_min),
            "yMax": float(self.y_max),
            "centerX": float(self.centroid_offset_x),
            "centerY": float(self.centroid_offset_y),
            "area": float(self.area),
            "offset": float(self.normalized_offset),
            "objectWidth": float(self.estimated_pixel_width),
            "distance": float(self.estimated_distance),
            "yaw": float(self.estimated_yaw_deg),
            "valid": 1.0 if self.valid else 0.0,
        }

    def to_dict(self) -> dict:
        return asdict(self)


def estimate_distance(physical_width: float, pixel_width: float, frame_width: float) -> float:
    """
    Pinhole-proportional range estimate.

    The target spans ``pixel_width / frame_width`` of the image, so the
    distance is ``physical_width`` divided by that fraction. Returns 0.0
    when the target has no measurable width.
    """
    if pixel_width <= 0 or frame_width <= 0:
        return 0.0
    return physical_width / (pixel_width / frame_width)


def _sentinel(width: int, height: int) -> BlobResult:
    return BlobResult(
        x_min=width - 1,
        x_max=0,
        y_min=height - 1,
        y_max=0,
        centroid_offset_x=0.0,
        centroid_offset_y=0.0,
        area=0.0,
        normalized_offset=0.0,
        estimated_pixel_width=0.0,
        estimated_distance=0.0,
        estimated_yaw_deg=0.0,
        valid=False,
    )


def locate_blob(
    image: np.ndarray,
    frame_width: int,
    target: TargetConstants,
    channel: int = 0,
) -> BlobResult:
    """
    Locate the bounding box of active pixels in a mask.

    Args:
        image: Single-channel mask, or multi-channel image whose ``channel``
               plane is tested.
        frame_width: Width used to normalise the estimates (the pipeline's
                     resize width).
        target: Physical constants of the target class.
        channel: Designated active channel for multi-channel input.

    Returns:
        BlobResult; ``valid`` is False when nothing exceeded the threshold,
        in which case bounds hold their initial sentinels and all derived
        fields are 0.0.
    """
    if image is None or image.size == 0:
        raise StageError("locate_blob: input image is empty")

    plane = image if image.ndim == 2 else image[..., channel]
    height, width = plane.shape[:2]

    ys, xs = np.nonzero(plane > ACTIVITY_THRESHOLD)
    if xs.size == 0:
        return _sentinel(width, height)

    x_min, x_max = int(xs.min()), int(xs.max())
    y_min, y_max = int(ys.min()), int(ys.max())

    extent_x = float(x_max - x_min)
    extent_y = float(y_max - y_min)
    area = extent_x * extent_y
    pixel_width = math.sqrt(area)
    normalized = extent_x / frame_width - 0.5

    return BlobResult(
        x_min=x_min,
        x_max=x_max,
        y_min=y_min,
        y_max=y_max,
        centroid_offset_x=extent_x,
        centroid_offset_y=extent_y,
        area=area,
        normalized_offset=normalized,
        estimated_pixel_width=pixel_width,
        estimated_distance=estimate_distance(target.physical_width_m, pixel_width, frame_width),
        estimated_yaw_deg=normalized * target.fov_deg,
        valid=True,
    )
