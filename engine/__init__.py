"""NetPulse engine: discovery, speed testing and traffic estimation."""
from engine.discovery import Device, DeviceDiscovery, VendorLookup
from engine.geolocation import PublicInfo, fetch_public_info
from engine.network_info import (
    LocalInterface,
    NetworkInfoAggregator,
    NetworkInfoSnapshot,
    SystemInfo,
)
from engine.platform_probe import PlatformProbe, get_platform_probe
from engine.speed_test import SpeedResult, SpeedTest, SpeedTestPhase
from engine.traffic import DataQuality, TrafficEstimator, TrafficRecord

__all__ = [
    "Device",
    "DeviceDiscovery",
    "VendorLookup",
    "PublicInfo",
    "fetch_public_info",
    "LocalInterface",
    "NetworkInfoAggregator",
    "NetworkInfoSnapshot",
    "SystemInfo",
    "PlatformProbe",
    "get_platform_probe",
    "SpeedResult",
    "SpeedTest",
    "SpeedTestPhase",
    "DataQuality",
    "TrafficEstimator",
    "TrafficRecord",
]
