"""
Colour segmentation stages: colour-space range threshold and mask.

Frames are BGR (OpenCV order). Range arguments are always given in the
colour space's *named* order (hue/saturation/luminance for HSL,
hue/saturation/value for HSV, red/green/blue for RGB) and are reassembled
into the channel layout OpenCV produces for that conversion:

    ============  ===================  ========================  ==========
    colour space  argument order       converted layout          remap
    ============  ===================  ========================  ==========
    HSL           (H, S, L)            COLOR_BGR2HLS → (H, L, S) (0, 2, 1)
    HSV           (H, S, V)            COLOR_BGR2HSV → (H, S, V) (0, 1, 2)
    RGB           (R, G, B)            COLOR_BGR2RGB → (R, G, B) (0, 1, 2)
    ============  ===================  ========================  ==========

Bounds are inclusive. On 8-bit images OpenCV rounds fractional bounds to
the nearest integer before testing, so (98.6, 204.96) behaves as
(99, 205). A range whose min exceeds its max is tested before rounding
and always yields an empty mask.
"""
from enum import Enum
from typing import Optional, Sequence, Tuple

import cv2
import numpy as np

from utils.failures import StageError

Range = Tuple[float, float]


class ColorSpace(Enum):
    HSL = "hsl"
    HSV = "hsv"
    RGB = "rgb"


_CONVERSIONS = {
    ColorSpace.HSL: cv2.COLOR_BGR2HLS,
    ColorSpace.HSV: cv2.COLOR_BGR2HSV,
    ColorSpace.RGB: cv2.COLOR_BGR2RGB,
}

# Converted channel i is bounded by argument range CHANNEL_ORDER[space][i]
CHANNEL_ORDER = {
    ColorSpace.HSL: (0, 2, 1),
    ColorSpace.HSV: (0, 1, 2),
    ColorSpace.RGB: (0, 1, 2),
}


def reorder_bounds(
    color_space: ColorSpace, ranges: Sequence[Range]
) -> Tuple[np.ndarray, np.ndarray]:
    """Return (lower, upper) bound vectors in the converted channel layout."""
    if len(ranges) != 3:
        raise StageError(f"color_range_threshold: expected 3 ranges, got {len(ranges)}")
    order = CHANNEL_ORDER[color_space]
    lower = np.array([float(ranges[i][0]) for i in order], dtype=np.float64)
    upper = np.array([float(ranges[i][1]) for i in order], dtype=np.float64)
    return lower, upper


def color_range_threshold(
    image: np.ndarray,
    color_space: ColorSpace,
    ch1: Range,
    ch2: Range,
    ch3: Range,
    dst: Optional[np.ndarray] = None,
    converted: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Segment an image on three inclusive channel ranges.

    Args:
        image: 3-channel BGR image.
        color_space: Colour space to convert into before testing.
        ch1, ch2, ch3: (min, max) ranges in the colour space's argument order.
        dst: Optional single-channel uint8 buffer for the mask.
        converted: Optional 3-channel buffer for the colour conversion.

    Returns:
        A uint8 mask, 255 where every channel is inside its range, else 0.
    """
    if image is None or image.size == 0:
        raise StageError("color_range_threshold: input image is empty")
    if image.ndim != 3 or image.shape[2] != 3:
        raise StageError(
            f"color_range_threshold: expected a 3-channel image, got shape {image.shape}"
        )

    lower, upper = reorder_bounds(color_space, (ch1, ch2, ch3))
    if np.any(lower > upper):
        return _empty_mask(image, dst)
    converted = cv2.cvtColor(image, _CONVERSIONS[color_space], dst=converted)
    return cv2.inRange(converted, lower, upper, dst=dst)


def _empty_mask(image: np.ndarray, dst: Optional[np.ndarray]) -> np.ndarray:
    shape = image.shape[:2]
    if dst is None or dst.shape != shape or dst.dtype != np.uint8:
        dst = np.empty(shape, dtype=np.uint8)
    dst[...] = 0
    return dst


def _coerce_mask(mask: np.ndarray) -> np.ndarray:
    """Single uint8 channel, saturating out-of-range values."""
    if mask.ndim == 3:
        mask = mask[..., 0]
    if mask.dtype == np.bool_:
        mask = mask.astype(np.uint8) * 255
    elif mask.dtype != np.uint8:
        mask = np.clip(mask, 0, 255).astype(np.uint8)
    return np.ascontiguousarray(mask)


def apply_mask(
    source: np.ndarray,
    mask: np.ndarray,
    dst: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Filter out an area of an image using a binary mask.

    Args:
        source: The image the mask filters.
        mask: Mask of the same height/width; non-zero pixels are kept.
        dst: Optional buffer to write into.

    Returns:
        A copy of ``source`` that is zero wherever the mask is zero.
    """
    if source is None or source.size == 0 or mask is None or mask.size == 0:
        raise StageError("apply_mask: source and mask must be non-empty")
    if source.shape[:2] != mask.shape[:2]:
        raise StageError(
            f"apply_mask: mask size {mask.shape[:2]} does not match source {source.shape[:2]}"
        )

    m = _coerce_mask(mask)
    if dst is None or dst.shape != source.shape or dst.dtype != source.dtype:
        dst = np.empty_like(source)
    dst[...] = 0
    return cv2.copyTo(source, m, dst)
