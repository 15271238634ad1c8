"""
Byte Ring Buffer.

Reference implementation of the ring buffer contract consumed by the
frame feed:
- push(bytes) -> bytes written
- pop(destination) -> bytes read
- available_write() -> free bytes
- capacity

One producer (the frame feed) and one consumer (e.g. a render loop on
another thread) may use it concurrently.
"""

from __future__ import annotations

import threading
from typing import Union

import numpy as np
from numpy.typing import NDArray


BytesLike = Union[bytes, bytearray, memoryview, NDArray[np.uint8]]


def _as_uint8(data: BytesLike) -> NDArray[np.uint8]:
    if isinstance(data, np.ndarray):
        return data.reshape(-1).view(np.uint8)
    return np.frombuffer(data, dtype=np.uint8)


class ByteRingBuffer:
    """
    Fixed-capacity byte ring.

    push never overwrites unread data: it writes at most
    available_write() bytes and returns how many it wrote. Frame-level
    eviction is the caller's job.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"Ring buffer capacity must be positive, got {capacity}")

        self._capacity = int(capacity)
        self._data = np.zeros(self._capacity, dtype=np.uint8)
        self._read_index = 0
        self._write_index = 0
        self._used = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def available_write(self) -> int:
        with self._lock:
            return self._capacity - self._used

    def available_read(self) -> int:
        with self._lock:
            return self._used

    def push(self, data: BytesLike) -> int:
        """Write as many bytes of data as fit. Returns bytes written."""
        src = _as_uint8(data)

        with self._lock:
            n = min(len(src), self._capacity - self._used)
            if n == 0:
                return 0

            first = min(n, self._capacity - self._write_index)
            self._data[self._write_index:self._write_index + first] = src[:first]
            if n > first:
                self._data[:n - first] = src[first:n]

            self._write_index = (self._write_index + n) % self._capacity
            self._used += n
            return n

    def pop(self, destination: Union[bytearray, memoryview, NDArray[np.uint8]]) -> int:
        """Read up to len(destination) bytes into destination. Returns bytes read."""
        if isinstance(destination, np.ndarray):
            dst = destination.reshape(-1).view(np.uint8)
        else:
            dst = np.frombuffer(destination, dtype=np.uint8)

        with self._lock:
            n = min(len(dst), self._used)
            if n == 0:
                return 0

            first = min(n, self._capacity - self._read_index)
            dst[:first] = self._data[self._read_index:self._read_index + first]
            if n > first:
                dst[first:n] = self._data[:n - first]

            self._read_index = (self._read_index + n) % self._capacity
            self._used -= n
            return n

    def clear(self):
        """Drop all unread bytes."""
        with self._lock:
            self._read_index = 0
            self._write_index = 0
            self._used = 0

    def __len__(self) -> int:
        return self.available_read()
