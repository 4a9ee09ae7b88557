"""Engine controller - the service object request handlers talk to.

Owns the traffic loop lifecycle and turns engine results and errors into
the response envelopes forwarded to the UI:

    {"data": ...}                                   on success
    {"error": "<message>", "code": "<ErrorType>"}   on failure

``DataAccessFailed`` envelopes also carry ``requires_elevated_privilege``.

Usage:
    from app.controller import EngineController
    from app.dependencies import create_dependencies

    controller = EngineController(create_dependencies())
    controller.start_traffic_monitoring()
    print(controller.get_traffic_data())
"""
import threading
from typing import Callable, Optional

from config import (
    INTERVALS,
    AlreadyRunning,
    DataAccessFailed,
    DiscoveryError,
    NetPulseError,
    SpeedTestError,
    get_logger,
    get_subprocess_cache,
)
from app.dependencies import EngineDependencies
from app.events import EventBus, EventType, get_event_bus
from app.timer import RepeatingTimer
from engine.speed_test import SpeedTestPhase

logger = get_logger(__name__)

# Receives (phase name, value) from run_speed_test
ProgressListener = Callable[[str, Optional[float]], None]


def error_envelope(error: NetPulseError) -> dict:
    """Envelope for a typed engine error."""
    envelope = {"error": error.message, "code": type(error).__name__}
    if isinstance(error, DataAccessFailed):
        envelope["requires_elevated_privilege"] = error.requires_elevated_privilege
    return envelope


class EngineController:
    """Central controller in front of the engine components.

    Attributes:
        deps: The dependency container with all components.
        event_bus: Event bus for progress and state notifications.
    """

    def __init__(self, deps: EngineDependencies, event_bus: Optional[EventBus] = None):
        self.deps = deps
        self.event_bus = event_bus or deps.event_bus or get_event_bus()
        self._traffic_timer: Optional[RepeatingTimer] = None
        self._lock = threading.Lock()
        logger.info("EngineController initialized")

    # ------------------------------------------------------------------
    # Speed test
    # ------------------------------------------------------------------

    def run_speed_test(self, on_progress: Optional[ProgressListener] = None) -> dict:
        """Run a speed test, publishing phases and live samples.

        Blocks until the test finishes. A call made while another test is
        running returns an ``AlreadyRunning`` envelope at once.
        """
        last_phase = [SpeedTestPhase.IDLE]

        def progress(phase: SpeedTestPhase, value: Optional[float]) -> None:
            if phase != last_phase[0]:
                last_phase[0] = phase
                self.event_bus.publish(EventType.SPEED_TEST_PHASE,
                                       {"phase": phase.value, "value": value})
            else:
                self.event_bus.publish(EventType.SPEED_TEST_SAMPLE,
                                       {"phase": phase.value, "mbps": value})
            if on_progress is not None:
                on_progress(phase.value, value)

        try:
            result = self.deps.speed_test.run(on_progress=progress)
        except AlreadyRunning as e:
            return error_envelope(e)
        except SpeedTestError as e:
            self.event_bus.publish(EventType.SPEED_TEST_FAILED, error_envelope(e))
            return error_envelope(e)

        self.event_bus.publish(EventType.SPEED_TEST_COMPLETED, result.to_dict())
        return {"data": result.to_dict()}

    # ------------------------------------------------------------------
    # Network info
    # ------------------------------------------------------------------

    def get_network_info(self) -> dict:
        """Gather a network snapshot and seed the traffic table with its devices."""
        try:
            snapshot = self.deps.network_info.gather()
        except DiscoveryError as e:
            logger.error(f"Network info failed: {e.message}")
            return error_envelope(e)

        device_ips = [device.ip for device in snapshot.devices]
        self.deps.traffic_estimator.seed_devices(device_ips)
        self.event_bus.publish(EventType.DEVICES_DISCOVERED, {
            "count": len(device_ips),
            "devices": [device.to_dict() for device in snapshot.devices],
        })
        return {"data": snapshot.to_dict()}

    # ------------------------------------------------------------------
    # Traffic
    # ------------------------------------------------------------------

    def get_traffic_data(self) -> dict:
        """Current traffic table keyed by IP, or the access failure."""
        estimator = self.deps.traffic_estimator
        try:
            records = estimator.get_traffic_data()
        except DataAccessFailed as e:
            return error_envelope(e)
        return {
            "data": {ip: record.to_dict() for ip, record in records.items()},
            "monitoring": self.is_monitoring,
            "counters_require_elevated_privilege": estimator.counters_require_elevated_privilege,
        }

    def _traffic_tick(self, _timer: RepeatingTimer) -> None:
        estimator = self.deps.traffic_estimator
        estimator.tick()
        try:
            records = estimator.get_traffic_data()
        except DataAccessFailed as e:
            self.event_bus.publish(EventType.TRAFFIC_UNAVAILABLE, error_envelope(e))
            return
        self.event_bus.publish(EventType.TRAFFIC_UPDATED, {
            "records": {ip: record.to_dict() for ip, record in records.items()},
            "counters_require_elevated_privilege": estimator.counters_require_elevated_privilege,
        })

    @property
    def is_monitoring(self) -> bool:
        with self._lock:
            return self._traffic_timer is not None and self._traffic_timer.is_running

    def start_traffic_monitoring(self) -> dict:
        """Start the background traffic loop. Idempotent."""
        with self._lock:
            if self._traffic_timer is not None and self._traffic_timer.is_running:
                return {"data": {"running": True, "interval_seconds": self._traffic_timer.interval}}

            interval = self.deps.settings.settings.traffic_interval_seconds
            self._traffic_timer = RepeatingTimer(self._traffic_tick, interval,
                                                 name="TrafficEstimator")
            self._traffic_timer.start()

        logger.info(f"Traffic monitoring started (every {interval}s)")
        self.event_bus.publish(EventType.ENGINE_STARTED, {"interval_seconds": interval})
        return {"data": {"running": True, "interval_seconds": interval}}

    def stop_traffic_monitoring(self) -> dict:
        """Stop the traffic loop, waiting briefly for a running tick."""
        with self._lock:
            timer = self._traffic_timer
            self._traffic_timer = None

        if timer is not None:
            timer.stop(timeout=INTERVALS.NETSTAT_TIMEOUT_SECONDS * 2)
            logger.info("Traffic monitoring stopped")
            self.event_bus.publish(EventType.ENGINE_STOPPED)
        return {"data": {"running": False}}

    def shutdown(self) -> None:
        """Stop background work and the event bus worker."""
        self.stop_traffic_monitoring()
        logger.debug(f"Command cache stats: {get_subprocess_cache().get_stats()}")
        self.event_bus.shutdown()
