"""Dependency injection container for the NetPulse engine.

Every long-lived engine object is created once here and handed to the
controller, so tests can substitute fakes for anything that touches the OS
or the network.

Usage:
    from app.dependencies import create_dependencies

    deps = create_dependencies()
    deps.speed_test.run()
    deps.traffic_estimator.tick()
"""

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from config import STORAGE, get_logger

if TYPE_CHECKING:
    from app.events import EventBus
    from engine.network_info import NetworkInfoAggregator
    from engine.platform_probe import PlatformProbe
    from engine.speed_test import SpeedTest
    from engine.traffic import TrafficEstimator
    from storage.settings import SettingsManager

logger = get_logger(__name__)


@dataclass
class EngineDependencies:
    """Container for all engine components."""

    probe: "PlatformProbe"
    network_info: "NetworkInfoAggregator"
    speed_test: "SpeedTest"
    traffic_estimator: "TrafficEstimator"
    settings: "SettingsManager"
    event_bus: Optional["EventBus"] = None

    def __post_init__(self):
        logger.debug("EngineDependencies container created")


def create_dependencies(
    data_dir: Optional[Path] = None, event_bus: Optional["EventBus"] = None
) -> EngineDependencies:
    """Create and wire all engine components.

    Args:
        data_dir: Override the default data directory (``~/.netpulse``).
        event_bus: Provide an existing event bus, or the global one is used.
    """
    # Import here to avoid circular imports
    from app.events import get_event_bus
    from engine.discovery import DeviceDiscovery, VendorLookup
    from engine.network_info import NetworkInfoAggregator
    from engine.platform_probe import get_platform_probe
    from engine.speed_test import SpeedTest
    from engine.traffic import TrafficEstimator
    from storage.settings import get_settings_manager

    logger.info("Creating engine dependencies...")

    if data_dir is None:
        data_dir = Path.home() / STORAGE.DATA_DIR_NAME

    settings_manager = get_settings_manager(data_dir)
    settings = settings_manager.settings

    probe = get_platform_probe()
    discovery = DeviceDiscovery(
        probe=probe,
        vendor_lookup=VendorLookup(limit=settings.vendor_lookup_limit),
        probe_concurrency=settings.probe_concurrency,
    )
    speed_test = SpeedTest(
        ping_attempts=settings.ping_attempts,
        download_seconds=settings.download_seconds,
        upload_seconds=settings.upload_seconds,
    )
    traffic_estimator = TrafficEstimator(
        probe=probe, evict_after_seconds=settings.traffic_evict_seconds
    )

    if event_bus is None:
        event_bus = get_event_bus()

    deps = EngineDependencies(
        probe=probe,
        network_info=NetworkInfoAggregator(discovery=discovery),
        speed_test=speed_test,
        traffic_estimator=traffic_estimator,
        settings=settings_manager,
        event_bus=event_bus,
    )

    logger.info("All dependencies created successfully")
    return deps
