"""Event bus shared by built-in transport events and application messages."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from pyee.asyncio import AsyncIOEventEmitter


logger = logging.getLogger(__name__)


Listener = Callable[[Any], Any]

# Listener failures are re-emitted by pyee under this type.
ERROR = "error"


class EventBus:
    """Thin wrapper over pyee.

    Listeners run synchronously in registration order. Coroutine listeners are
    scheduled on the running loop. Emitting a type nobody listens to is a no-op.
    """

    def __init__(self, loop=None):
        self._emitter = AsyncIOEventEmitter(loop=loop)
        self._emitter.on(ERROR, self._on_listener_error)

    def on(self, event_type: str, listener: Optional[Listener] = None):
        if listener is None:
            return self._emitter.on(event_type)
        self._emitter.on(event_type, listener)
        return listener

    def remove_listener(self, event_type: str, listener: Listener) -> None:
        self._emitter.remove_listener(event_type, listener)

    def emit(self, event_type: str, data: Any = None) -> bool:
        if event_type == ERROR or not self._emitter.listeners(event_type):
            return False
        return self._emitter.emit(event_type, data)

    def _on_listener_error(self, exc: Any) -> None:
        logger.error("event listener failed: %r", exc, exc_info=exc if isinstance(exc, BaseException) else None)
