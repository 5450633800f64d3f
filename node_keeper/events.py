"""Typed publish/subscribe channel for supervisor events.

Handlers subscribe per event class and are called synchronously, in
subscription order, from the event loop that publishes.  Delivery order
therefore matches publish order for every subscriber.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, TypeVar

log = logging.getLogger(__name__)

E = TypeVar("E")

Handler = Callable[[Any], None]


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`."""

    def __init__(self, bus: EventBus, kind: type, handler: Handler) -> None:
        self._bus = bus
        self._kind = kind
        self._handler = handler
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self._bus._remove(self._kind, self._handler)
            self.active = False


class EventBus:
    def __init__(self) -> None:
        self._handlers: dict[type, list[Handler]] = {}

    def subscribe(self, kind: type[E], handler: Callable[[E], None]) -> Subscription:
        self._handlers.setdefault(kind, []).append(handler)
        return Subscription(self, kind, handler)

    def publish(self, event: Any) -> None:
        # Copy so a handler cancelling its subscription mid-delivery is safe
        for handler in list(self._handlers.get(type(event), ())):
            try:
                handler(event)
            except Exception:
                log.exception("Event handler %r failed for %r", handler, event)

    def _remove(self, kind: type, handler: Handler) -> None:
        handlers = self._handlers.get(kind)
        if handlers and handler in handlers:
            handlers.remove(handler)
