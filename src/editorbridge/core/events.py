"""Typed event stream shared by the bridge, the refresh coordinator and clients.

Host notifications (compile started/finished, project changed) and internal
lifecycle signals are modeled as small dataclasses published on an
:class:`EventBus`. Subscribers register per event type and are invoked
synchronously on the publishing thread.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Generic,
    TypeVar,
    TYPE_CHECKING,
)
from weakref import WeakMethod, ref

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from typing import DefaultDict

    from ..refresh.markers import RefreshRequest

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all events in the system."""

    pass


# High-frequency event types that should not log each publish
_QUIET_EVENT_TYPES: set[type] = set()


# =============================================================================
# Host Notifications
# =============================================================================


@dataclass(slots=True)
class HostNotification(Event):
    """Raw unsolicited notification received from the host.

    Attributes:
        name: The event name carried on the wire (e.g. ``compile-finished``).
        data: The event payload, if any.
    """

    name: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class CompileStarted(Event):
    """Emitted when the host reports that script compilation began."""

    assemblies: tuple[str, ...] = ()


@dataclass(slots=True)
class CompileFinished(Event):
    """Emitted when the host reports that script compilation finished.

    Attributes:
        success: Whether compilation produced no errors.
        error_count: Number of errors the host reported, when known.
    """

    success: bool = True
    error_count: int = 0


@dataclass(slots=True)
class ProjectChanged(Event):
    """Emitted when the host reports that project assets changed on disk."""

    paths: tuple[str, ...] = ()


# =============================================================================
# Refresh Coordination
# =============================================================================


@dataclass(slots=True)
class RefreshSignaled(Event):
    """Emitted each time a refresh marker is written for the host watcher."""

    request: "RefreshRequest"


@dataclass(slots=True)
class BatchStarted(Event):
    """Emitted when a batch session opens."""

    pass


@dataclass(slots=True)
class BatchFlushed(Event):
    """Emitted when a batch session closes.

    Attributes:
        count: Number of mutations coalesced into the flush.
        reason: ``"explicit"`` or ``"idle-timeout"``.
    """

    count: int
    reason: str


# =============================================================================
# Connection Lifecycle
# =============================================================================


@dataclass(slots=True)
class BridgeConnected(Event):
    host: str
    port: int


@dataclass(slots=True)
class BridgeDisconnected(Event):
    reason: str = ""


_QUIET_EVENT_TYPES.add(HostNotification)


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus.

    Handlers are stored as weak references where possible (bound methods)
    so that subscribers do not outlive their owners. Publishing happens on
    whichever thread calls :meth:`publish`; the handler table is guarded by a
    lock because timers and socket readers publish concurrently.

    Example::

        bus = EventBus()
        bus.subscribe(CompileFinished, lambda event: print(event.error_count))
        bus.publish(CompileFinished(success=False, error_count=3))
    """

    __slots__ = ("_handlers", "_lock")

    def __init__(self) -> None:
        self._handlers: DefaultDict[type[Event], list[_HandlerRef]] = defaultdict(list)
        self._lock = threading.RLock()

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register a handler to receive events of the specified type.

        Subscribing the same handler twice results in two invocations.
        """
        handler_ref = _HandlerRef.create(handler)
        with self._lock:
            self._handlers[event_type].append(handler_ref)
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        with self._lock:
            handlers = self._handlers.get(event_type)
            if handlers is None:
                return
            for i, handler_ref in enumerate(handlers):
                if handler_ref.matches(handler):
                    handlers.pop(i)
                    logger.debug(
                        "Unsubscribed handler %s from event type %s",
                        _handler_name(handler),
                        event_type.__name__,
                    )
                    return

    def publish(self, event: E) -> None:
        """Broadcast an event to all registered handlers.

        Handlers run in registration order. A handler that raises is logged
        and the remaining handlers still run.
        """
        event_type = type(event)
        is_quiet = event_type in _QUIET_EVENT_TYPES
        with self._lock:
            handlers = list(self._handlers.get(event_type, ()))

        if not handlers:
            if not is_quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return

        if not is_quiet:
            logger.debug(
                "Publishing %s to %d handler(s)",
                event_type.__name__,
                len(handlers),
            )

        dead: list[_HandlerRef] = []
        for handler_ref in handlers:
            handler = handler_ref.resolve()
            if handler is None:
                dead.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        if dead:
            with self._lock:
                current = self._handlers.get(event_type)
                if current is not None:
                    current[:] = [entry for entry in current if entry not in dead]

    def clear(self) -> None:
        """Remove all registered handlers."""
        with self._lock:
            self._handlers.clear()
        logger.debug("Cleared all event handlers")

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Return the number of handlers for ``event_type``, or in total."""
        with self._lock:
            if event_type is not None:
                return len(self._handlers.get(event_type, []))
            return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Wrapper holding a weak reference for bound methods, a strong one otherwise."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | ref | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                # Some callables can't be weakly referenced
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        cls_name = type(handler.__self__).__name__
        return f"{cls_name}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    # Host notifications
    "HostNotification",
    "CompileStarted",
    "CompileFinished",
    "ProjectChanged",
    # Refresh coordination
    "RefreshSignaled",
    "BatchStarted",
    "BatchFlushed",
    # Connection lifecycle
    "BridgeConnected",
    "BridgeDisconnected",
]
