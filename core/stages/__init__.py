"""
Image stage library for the vision pipelines.

Every pipeline is a fixed composition of these stages:

    resize → blur → color_range_threshold → (apply_mask → color_range_threshold)

All stages are pure functions over numpy/OpenCV images. Each takes an
optional ``dst`` array that OpenCV writes into when its shape and dtype
match, so callers can reuse pre-allocated buffers across frames.
"""
from .filters import BlurKind, Interpolation, resize, blur, kernel_size
from .threshold import ColorSpace, CHANNEL_ORDER, color_range_threshold, apply_mask

__all__ = [
    "BlurKind",
    "Interpolation",
    "ColorSpace",
    "CHANNEL_ORDER",
    "resize",
    "blur",
    "kernel_size",
    "color_range_threshold",
    "apply_mask",
]
