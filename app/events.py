"""Event bus for engine notifications.

Long-running engine work (speed tests, discovery, the traffic loop) reports
progress here so a UI or IPC layer can follow along without holding
references to the engine objects.

Usage:
    from app.events import EventBus, EventType

    bus = EventBus()
    bus.subscribe(EventType.SPEED_TEST_SAMPLE, lambda e: print(e.data["mbps"]))
    bus.publish(EventType.SPEED_TEST_SAMPLE, {"phase": "download", "mbps": 93.4})
"""
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

from config import get_logger

logger = get_logger(__name__)


class EventType(Enum):
    """Types of events that can be published/subscribed."""

    # Speed test
    SPEED_TEST_PHASE = auto()
    SPEED_TEST_SAMPLE = auto()
    SPEED_TEST_COMPLETED = auto()
    SPEED_TEST_FAILED = auto()

    # Discovery
    DEVICES_DISCOVERED = auto()

    # Traffic estimator
    TRAFFIC_UPDATED = auto()
    TRAFFIC_UNAVAILABLE = auto()

    # Engine lifecycle
    ENGINE_STARTED = auto()
    ENGINE_STOPPED = auto()


@dataclass
class Event:
    """An event with its payload.

    Attributes:
        event_type: The type of event.
        data: Event-specific payload.
        timestamp: When the event was created.
        source: Optional identifier of the publisher.
    """
    event_type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)
    source: Optional[str] = None

    def __str__(self) -> str:
        return f"Event({self.event_type.name}, data={self.data})"


EventHandler = Callable[[Event], None]


class EventBus:
    """Thread-safe publish/subscribe event bus.

    In async mode (the default) a worker thread delivers events in publish
    order; publishers never block on slow handlers. A handler that raises is
    logged and does not affect other handlers.

    Example:
        >>> bus = EventBus(async_mode=False)
        >>> bus.subscribe(EventType.TRAFFIC_UPDATED, lambda e: print(e.data))
        >>> bus.publish(EventType.TRAFFIC_UPDATED, {"records": {}})
    """

    def __init__(self, async_mode: bool = True):
        self._subscribers: Dict[EventType, List[EventHandler]] = {}
        self._lock = threading.Lock()
        self._async_mode = async_mode
        self._event_queue: queue.Queue = queue.Queue()
        self._running = False
        self._worker_thread: Optional[threading.Thread] = None

        if async_mode:
            self._start_worker()

    def _start_worker(self) -> None:
        self._running = True
        self._worker_thread = threading.Thread(
            target=self._process_events,
            daemon=True,
            name="EventBus-Worker"
        )
        self._worker_thread.start()

    def _process_events(self) -> None:
        while self._running:
            try:
                event = self._event_queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._dispatch_event(event)
            finally:
                self._event_queue.task_done()

    def _dispatch_event(self, event: Event) -> None:
        with self._lock:
            handlers = list(self._subscribers.get(event.event_type, []))

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Error in event handler for {event.event_type.name}: {e}",
                    exc_info=True
                )

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        with self._lock:
            self._subscribers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed to {event_type.name}")

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> bool:
        """Remove a handler. Returns False if it was not subscribed."""
        with self._lock:
            handlers = self._subscribers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
        return False

    def publish(self, event_type: EventType, data: Optional[Dict[str, Any]] = None,
                source: Optional[str] = None) -> None:
        """Publish an event (queued in async mode, immediate otherwise)."""
        event = Event(event_type=event_type, data=data or {}, source=source)
        if self._async_mode and self._running:
            self._event_queue.put(event)
        else:
            self._dispatch_event(event)

    def wait_until_idle(self) -> None:
        """Block until every queued event has been delivered."""
        if self._async_mode:
            self._event_queue.join()

    def get_subscriber_count(self, event_type: EventType) -> int:
        with self._lock:
            return len(self._subscribers.get(event_type, []))

    def clear_subscribers(self, event_type: Optional[EventType] = None) -> None:
        with self._lock:
            if event_type:
                self._subscribers.pop(event_type, None)
            else:
                self._subscribers.clear()

    def shutdown(self) -> None:
        """Stop the worker thread. Later publishes are delivered synchronously."""
        self._running = False
        if self._worker_thread:
            self._worker_thread.join(timeout=1.0)
            self._worker_thread = None
        logger.debug("EventBus shut down")


_global_bus: Optional[EventBus] = None
_global_bus_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Get or create the process-wide event bus."""
    global _global_bus
    with _global_bus_lock:
        if _global_bus is None:
            _global_bus = EventBus(async_mode=True)
        return _global_bus
