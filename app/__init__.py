"""Application layer for the NetPulse engine.

Contains the components that host the engine:
- EventBus: Progress and state notifications
- EngineController: Request-facing service object with DI
- RepeatingTimer: Non-overlapping background loop
"""

from app.controller import EngineController, error_envelope
from app.dependencies import EngineDependencies, create_dependencies
from app.events import Event, EventBus, EventType, get_event_bus
from app.timer import RepeatingTimer

__all__ = [
    "EngineController",
    "EngineDependencies",
    "Event",
    "EventBus",
    "EventType",
    "RepeatingTimer",
    "create_dependencies",
    "error_envelope",
    "get_event_bus",
]
