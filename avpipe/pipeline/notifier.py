"""
Frame notification.

Synchronous fan-out of videoFrame events to registered listeners, in
registration order. No queuing: emit() returns after every listener ran.
"""

from __future__ import annotations

from typing import Callable, Dict, Generic, TypeVar

from loguru import logger


T = TypeVar("T")


class Notifier(Generic[T]):
    """Ordered list of listener callbacks addressed by integer handles."""

    def __init__(self, name: str = "videoFrame"):
        self.name = name
        self._listeners: Dict[int, Callable[[T], None]] = {}
        self._next_handle = 1

    def add(self, listener: Callable[[T], None]) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._listeners[handle] = listener
        return handle

    def remove(self, handle: int) -> bool:
        return self._listeners.pop(handle, None) is not None

    def emit(self, payload: T) -> int:
        """
        Deliver payload to every listener.

        A failing listener is logged and does not stop delivery to the
        others.

        Returns:
            Number of listeners invoked
        """
        delivered = 0
        for handle, listener in list(self._listeners.items()):
            try:
                listener(payload)
            except Exception as e:
                logger.error(f"{self.name} listener {handle} failed: {e}")
            delivered += 1
        return delivered

    def clear(self):
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
