"""Event bus for invocation observability.

A simple synchronous event bus that carries domain events from the
orchestrator to CLI formatters, keeping presentation out of the engine.

Concurrent invocations on one Orchestrator emit from their own threads,
so handlers must tolerate being called from more than one thread.
"""

import threading
from collections.abc import Callable
from typing import Any, Protocol, TypeVar

T = TypeVar("T")


class EventBusProtocol(Protocol):
    """Protocol satisfied by both EventBus and NullEventBus."""

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type."""
        ...

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers."""
        ...


class EventBus:
    """Synchronous event bus.

    Events are dispatched in subscription order on the emitting thread.
    Handler exceptions propagate to the caller.

    Example:
        bus = EventBus()
        bus.subscribe(StateChanged, lambda e: print(e.current))
        bus.emit(StateChanged(invocation_id, InvocationState.IDLE, InvocationState.CONFIGURING))
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Callable[[Any], None]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        """Subscribe a handler to an event type.

        Args:
            event_type: The event class to subscribe to
            handler: Callable that receives the event instance
        """
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(handler)

    def emit(self, event: T) -> None:
        """Emit an event to all subscribers of its exact type.

        Handlers subscribed while an emit is in progress only see later
        events. Events with no subscribers are ignored.
        """
        with self._lock:
            handlers = list(self._subscribers.get(type(event), ()))
        for handler in handlers:
            handler(event)


class NullEventBus:
    """No-op event bus for library use where nobody is listening.

    Does NOT inherit from EventBus, so it cannot be passed where a real
    bus is expected by accident.
    """

    def subscribe(self, event_type: type[T], handler: Callable[[T], None]) -> None:
        pass

    def emit(self, event: T) -> None:
        pass
