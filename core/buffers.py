"""
Per-worker frame buffer pool.

Each AcquisitionWorker owns exactly one pool. Buffers are allocated on
first use and handed back out on every later cycle, so steady-state frame
processing does no image allocation. A pool is never shared between
threads, hence no locking.
"""
from typing import Dict, Tuple

import numpy as np


class FrameBufferPool:
    """Named, reusable numpy buffers with single-owner semantics."""

    def __init__(self, owner: str = "worker"):
        self.owner = owner
        self._buffers: Dict[str, np.ndarray] = {}
        self.allocations = 0

    def acquire(self, key: str, shape: Tuple[int, ...], dtype=np.uint8) -> np.ndarray:
        """
        Return the buffer registered under ``key``.

        A new buffer is allocated only when none exists yet or the
        requested shape/dtype changed (e.g. a camera renegotiated its mode).
        Contents are whatever the previous cycle left there.
        """
        dtype = np.dtype(dtype)
        buf = self._buffers.get(key)
        if buf is None or buf.shape != tuple(shape) or buf.dtype != dtype:
            buf = np.empty(shape, dtype=dtype)
            self._buffers[key] = buf
            self.allocations += 1
        return buf

    def peek(self, key: str):
        """The buffer under ``key`` or None, without allocating."""
        return self._buffers.get(key)

    def adopt(self, key: str, array: np.ndarray) -> np.ndarray:
        """
        Register an array produced elsewhere (e.g. a capture driver that
        ignored the offered buffer) so the next cycle reuses it.
        """
        self._buffers[key] = array
        return array

    def __len__(self) -> int:
        return len(self._buffers)

    def __contains__(self, key: str) -> bool:
        return key in self._buffers

    def release(self) -> None:
        self._buffers.clear()
