"""
Geometric and smoothing stages: resize and blur.
"""
from enum import Enum
from typing import Optional

import cv2
import numpy as np

from utils.failures import StageError


class Interpolation(Enum):
    """Resampling kernels accepted by :func:`resize`."""
    NEAREST = "nearest"
    LINEAR = "linear"
    CUBIC = "cubic"
    AREA = "area"
    LANCZOS = "lanczos"

    @property
    def cv_flag(self) -> int:
        return _INTERPOLATION_FLAGS[self]


_INTERPOLATION_FLAGS = {
    Interpolation.NEAREST: cv2.INTER_NEAREST,
    Interpolation.LINEAR: cv2.INTER_LINEAR,
    Interpolation.CUBIC: cv2.INTER_CUBIC,
    Interpolation.AREA: cv2.INTER_AREA,
    Interpolation.LANCZOS: cv2.INTER_LANCZOS4,
}


class BlurKind(Enum):
    """Smoothing filters accepted by :func:`blur`."""
    BOX = "box"
    GAUSSIAN = "gaussian"
    MEDIAN = "median"
    BILATERAL = "bilateral"


def _require_image(image: Optional[np.ndarray], stage: str) -> None:
    if image is None or image.size == 0:
        raise StageError(f"{stage}: input image is empty")


def resize(
    image: np.ndarray,
    width: float,
    height: float,
    interpolation: Interpolation = Interpolation.CUBIC,
    dst: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Scale an image to an exact size.

    Args:
        image: Input image (any channel count).
        width: Output width in pixels.
        height: Output height in pixels.
        interpolation: Resampling kernel.
        dst: Optional buffer to write into.

    Returns:
        An image of exactly ``width`` x ``height``.
    """
    _require_image(image, "resize")
    size = (int(width), int(height))
    if size[0] <= 0 or size[1] <= 0:
        raise StageError(f"resize: invalid target size {size[0]}x{size[1]}")
    return cv2.resize(image, size, dst=dst, interpolation=interpolation.cv_flag)


def kernel_size(kind: BlurKind, radius: float) -> int:
    """
    Kernel extent used by :func:`blur` for a given radius.

    The radius is rounded half-up. Bilateral filtering lets OpenCV derive
    the diameter from the sigma, signalled by ``-1``.
    """
    r = int(radius + 0.5)
    if kind in (BlurKind.BOX, BlurKind.MEDIAN):
        return 2 * r + 1
    if kind is BlurKind.GAUSSIAN:
        return 6 * r + 1
    return -1


def blur(
    image: np.ndarray,
    kind: BlurKind,
    radius: float,
    dst: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Soften an image using one of several filters.

    Args:
        image: Input image.
        kind: Which filter to apply.
        radius: Non-negative blur radius; rounded to the nearest integer r.
        dst: Optional buffer to write into (must not alias ``image``).

    Returns:
        The blurred image. ``r == 0`` is (near) identity.
    """
    _require_image(image, "blur")
    if radius < 0:
        raise StageError(f"blur: radius must be non-negative, got {radius}")

    r = int(radius + 0.5)
    ksize = kernel_size(kind, radius)

    if kind is BlurKind.BOX:
        return cv2.blur(image, (ksize, ksize), dst=dst)
    if kind is BlurKind.GAUSSIAN:
        return cv2.GaussianBlur(image, (ksize, ksize), r, dst=dst)
    if kind is BlurKind.MEDIAN:
        return cv2.medianBlur(image, ksize, dst=dst)
    if kind is BlurKind.BILATERAL:
        return cv2.bilateralFilter(image, -1, r, r, dst=dst)
    raise StageError(f"blur: unsupported blur kind {kind!r}")
