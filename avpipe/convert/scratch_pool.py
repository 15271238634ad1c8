"""
Scratch buffer pool for the frame converter.

Buffers are leased through a context manager so every lease is returned
on every exit path, including exceptions.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Iterator, List, Tuple

import numpy as np
from numpy.typing import NDArray


class ScratchPool:
    """Reusable numpy scratch buffers keyed by shape and dtype."""

    def __init__(self, max_per_key: int = 2):
        self.max_per_key = max_per_key
        self._free: Dict[Tuple[Tuple[int, ...], str], List[NDArray]] = {}
        self._leased = 0

    @contextmanager
    def lease(self, shape, dtype=np.uint8) -> Iterator[NDArray]:
        key = (tuple(int(s) for s in shape), np.dtype(dtype).str)
        bucket = self._free.get(key)
        buf = bucket.pop() if bucket else np.empty(key[0], dtype=dtype)
        self._leased += 1
        try:
            yield buf
        finally:
            self._leased -= 1
            bucket = self._free.setdefault(key, [])
            if len(bucket) < self.max_per_key:
                bucket.append(buf)

    @property
    def leased(self) -> int:
        """Number of buffers currently out on lease."""
        return self._leased

    @property
    def pooled(self) -> int:
        """Number of idle buffers held for reuse."""
        return sum(len(b) for b in self._free.values())

    def release(self):
        """Drop every idle buffer."""
        self._free.clear()
