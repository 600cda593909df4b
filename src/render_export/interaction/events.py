"""
Event bus system for decoupling the exporter from its observers.

Renderer events (log lines, progress, images) arrive on the protocol
client's receive thread while the export loop runs on the caller's thread.
The bus lets UIs, progress reporters and tests subscribe to both without
either side knowing about the other.
"""
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Standard event types for the exporter."""

    # Export session events
    EXPORT_STARTED = auto()
    EXPORT_PROGRESS = auto()  # {"current": int, "total": int, "clock": FrameClock}
    EXPORT_COMPLETED = auto()
    EXPORT_CANCELLED = auto()  # {"last_clock": FrameClock | None, "error": Exception | None}

    # Renderer events (dispatched from the receive thread)
    RENDERER_LOG = auto()  # {"level": int, "message": str}
    RENDER_PROGRESS = auto()  # {"progress": float, "message": str | None}
    IMAGE_UPDATED = auto()  # {"channel": int, "bucket": bool, "region": tuple}
    IMAGE_READY = auto()  # {"channel": int}
    RENDERER_ABORTED = auto()
    FRAME_RENDERED = auto()  # {"frame": float}

    # Connection events
    CONNECTED = auto()
    DISCONNECTED = auto()


@dataclass
class Event:
    """Event data container."""
    type: EventType | str
    data: dict[str, Any]
    source: str | None = None


class EventBus:
    """
    Simple thread-safe event bus for pub/sub pattern.

    Callbacks run synchronously on the emitting thread. Subscriber lists are
    snapshotted under a lock, so subscribing from one thread while another
    emits is safe.
    """

    def __init__(self, name: str = "default"):
        """
        Initialize event bus.

        Parameters
        ----------
        name : str
            Name of this event bus instance
        """
        self.name = name
        self._subscribers: dict[EventType | str, list[tuple[int, Callable]]] = {}
        self._event_history: list[Event] = []
        self._max_history = 100
        self._lock = threading.RLock()
        logger.debug(f"Created EventBus: {name}")

    def subscribe(
        self,
        event_type: EventType | str,
        callback: Callable[[Event], None],
        priority: int = 0
    ) -> None:
        """
        Subscribe to an event type.

        Parameters
        ----------
        event_type : EventType | str
            Event type to subscribe to
        callback : Callable[[Event], None]
            Function to call when event is emitted
        priority : int
            Priority for callback execution (higher = earlier)
        """
        with self._lock:
            callbacks = self._subscribers.setdefault(event_type, [])

            # Insert by priority (higher priority first)
            for i, (existing_priority, _) in enumerate(callbacks):
                if priority > existing_priority:
                    callbacks.insert(i, (priority, callback))
                    break
            else:
                callbacks.append((priority, callback))

        logger.debug(
            f"[{self.name}] Subscribed to {event_type}: "
            f"{getattr(callback, '__name__', callback)} (priority={priority})"
        )

    def unsubscribe(
        self,
        event_type: EventType | str,
        callback: Callable[[Event], None]
    ) -> bool:
        """
        Unsubscribe from an event type.

        Returns
        -------
        bool
            True if callback was found and removed
        """
        with self._lock:
            callbacks = self._subscribers.get(event_type)
            if not callbacks:
                return False
            for i, (_, cb) in enumerate(callbacks):
                if cb == callback:
                    del callbacks[i]
                    return True
        return False

    def emit(
        self,
        event_type: EventType | str,
        source: str | None = None,
        **data
    ) -> None:
        """
        Emit an event.

        Handler exceptions are logged and never reach the emitter, so a
        faulty observer cannot stall the receive thread or the export loop.

        Parameters
        ----------
        event_type : EventType | str
            Type of event to emit
        source : str | None
            Component emitting the event
        **data
            Event data as keyword arguments
        """
        event = Event(type=event_type, data=data, source=source)

        with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history.pop(0)
            subscribers = list(self._subscribers.get(event_type, ()))

        for _priority, callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.error(
                    f"[{self.name}] Error in event handler "
                    f"{getattr(callback, '__name__', callback)} for {event_type}: {e}",
                    exc_info=True
                )

    def clear_subscribers(self, event_type: (EventType | str) | None = None) -> None:
        """
        Clear subscribers.

        Parameters
        ----------
        event_type : (EventType | str) | None
            If provided, clear only for this event type.
            If None, clear all subscribers.
        """
        with self._lock:
            if event_type is None:
                self._subscribers.clear()
            else:
                self._subscribers.pop(event_type, None)

    def get_history(
        self,
        event_type: (EventType | str) | None = None,
        limit: int | None = None
    ) -> list[Event]:
        """
        Get event history (most recent last).
        """
        with self._lock:
            history = list(self._event_history)

        if event_type is not None:
            history = [e for e in history if e.type == event_type]

        if limit is not None:
            history = history[-limit:]

        return history

    def has_subscribers(self, event_type: EventType | str) -> bool:
        """Check if an event type has any subscribers."""
        with self._lock:
            return bool(self._subscribers.get(event_type))


__all__ = [
    "Event",
    "EventBus",
    "EventType",
]
