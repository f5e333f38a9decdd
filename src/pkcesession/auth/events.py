"""Minimal event channel for session and auth-state changes."""

import logging
from collections.abc import Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Emitter(Generic[T]):
    """Fan out values to subscribed listeners.

    Listener failures are logged and do not stop delivery to other listeners.
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: list[Callable[[T], None]] = []
        self._disposed = False

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        if self._disposed:
            raise RuntimeError(f"Emitter {self.name!r} is disposed")
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def fire(self, value: T) -> None:
        if self._disposed:
            return
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Listener for %s failed", self.name)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def dispose(self) -> None:
        self._listeners.clear()
        self._disposed = True
