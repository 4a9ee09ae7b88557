"""Background repeating timer for engine loops.

Each tick runs to completion before the next wait begins, so a slow tick
delays the following one instead of overlapping it.

Usage:
    from app.timer import RepeatingTimer

    def on_tick(timer):
        print("Tick!")

    timer = RepeatingTimer(on_tick, interval=3.0)
    timer.start()
"""

import threading
from typing import Callable, Optional

from config import get_logger

logger = get_logger(__name__)


class RepeatingTimer:
    """Calls ``callback(timer)`` every ``interval`` seconds on a daemon thread.

    Attributes:
        interval: Time between the end of one tick and the start of the next.

    Example:
        >>> timer = RepeatingTimer(callback, interval=1.0, run_immediately=True)
        >>> timer.start()
        >>> # Later...
        >>> timer.stop()
    """

    def __init__(self, callback: Callable, interval: float, run_immediately: bool = True,
                 name: str = "RepeatingTimer"):
        """Initialize the timer.

        Args:
            callback: Function to call on each tick. Receives the timer as argument.
            interval: Time between ticks in seconds.
            run_immediately: Tick once right after start() instead of waiting.
            name: Thread name.
        """
        self._callback = callback
        self._interval = interval
        self._run_immediately = run_immediately
        self._name = name
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    @property
    def interval(self) -> float:
        """Get the current interval."""
        return self._interval

    @interval.setter
    def interval(self, value: float) -> None:
        """Update interval; takes effect after the current wait."""
        with self._lock:
            self._interval = value

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _tick(self) -> None:
        try:
            self._callback(self)
        except Exception as e:
            logger.error(f"{self._name} tick failed: {e}", exc_info=True)

    def _timer_loop(self) -> None:
        if self._run_immediately and not self._stop_event.is_set():
            self._tick()
        while not self._stop_event.wait(self._interval):
            self._tick()

    def start(self) -> None:
        """Start the timer in a background thread. No-op if already running."""
        with self._lock:
            if self.is_running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._timer_loop, daemon=True, name=self._name)
            self._thread.start()
        logger.debug(f"{self._name} started with interval {self._interval}s")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the timer and wait up to ``timeout`` for a running tick to end."""
        self._stop_event.set()
        with self._lock:
            thread = self._thread
            self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.debug(f"{self._name} stopped")
