"""Centralized constants and configuration for the NetPulse engine.

Every timeout, endpoint and limit used by the engine lives here so the
behaviour of discovery, speed testing and traffic sampling can be tuned in
one place.

Usage:
    from config.constants import INTERVALS, NETWORK, SPEED_TEST

    probe_timeout = NETWORK.PROBE_TIMEOUT_SECONDS
    download_seconds = SPEED_TEST.DOWNLOAD_SECONDS
"""
from dataclasses import dataclass


@dataclass(frozen=True)
class Intervals:
    """Time intervals for background work and command timeouts (seconds)."""
    # Traffic estimator loop
    TRAFFIC_SAMPLE_SECONDS: float = 3.0
    TRAFFIC_EVICT_SECONDS: float = 60.0

    # Subprocess timeouts
    SUBPROCESS_TIMEOUT_SECONDS: float = 10.0
    ARP_TIMEOUT_SECONDS: float = 10.0
    NETSTAT_TIMEOUT_SECONDS: float = 5.0
    ELEVATION_TIMEOUT_SECONDS: float = 60.0

    # ARP results change slowly, reuse them briefly
    ARP_CACHE_TTL_SECONDS: float = 2.0

    # Marker files written by an elevated script may lag the launcher exit
    ELEVATION_FLUSH_SECONDS: float = 0.3


@dataclass(frozen=True)
class NetworkConfig:
    """Discovery and lookup configuration."""
    # Subnet probing (populates the ARP cache as a side effect)
    PROBE_PORT: int = 80
    PROBE_CONCURRENCY: int = 30
    PROBE_TIMEOUT_SECONDS: float = 0.3
    ARP_SETTLE_SECONDS: float = 0.5

    # Reverse DNS
    HOSTNAME_RESOLVE_TIMEOUT: float = 2.0
    HOSTNAME_RESOLVE_WORKERS: int = 32

    # MAC vendor lookup (api.macvendors.com is rate limited)
    VENDOR_LOOKUP_URL: str = "https://api.macvendors.com/{mac}"
    VENDOR_LOOKUP_LIMIT: int = 20
    VENDOR_LOOKUP_DELAY_SECONDS: float = 0.12
    VENDOR_LOOKUP_TIMEOUT: float = 3.0

    # Public IP geolocation
    GEOLOCATION_URL: str = "https://ipinfo.io/json"
    GEOLOCATION_TIMEOUT: float = 6.0

    USER_AGENT: str = "NetPulse/1.0"


@dataclass(frozen=True)
class SpeedTestConfig:
    """Speed test endpoints, payload sizes and stage durations."""
    PING_URL: str = "https://speed.cloudflare.com/__down?bytes=0"
    PING_ATTEMPTS: int = 5
    PING_TIMEOUT_SECONDS: float = 5.0

    DOWNLOAD_URL: str = "https://speed.cloudflare.com/__down?bytes={size}"
    DOWNLOAD_PAYLOAD_BYTES: int = 25_000_000
    DOWNLOAD_SECONDS: float = 12.0
    DOWNLOAD_CHUNK_BYTES: int = 64 * 1024

    UPLOAD_URL: str = "https://speed.cloudflare.com/__up"
    UPLOAD_PAYLOAD_BYTES: int = 2_000_000
    UPLOAD_SECONDS: float = 10.0

    # Extra time granted to a request beyond the stage duration
    REQUEST_GRACE_SECONDS: float = 2.0


@dataclass(frozen=True)
class StorageConfig:
    """Storage and file-related configuration."""
    DATA_DIR_NAME: str = ".netpulse"
    SETTINGS_FILE: str = "settings.json"
    LOG_FILE: str = "netpulse.log"

    # Log rotation
    LOG_MAX_BYTES: int = 5_000_000  # 5MB
    LOG_BACKUP_COUNT: int = 3

    # Prefix for temporary elevation scripts
    ELEVATION_TEMP_PREFIX: str = "netpulse_"


# Global instances - import these
INTERVALS = Intervals()
NETWORK = NetworkConfig()
SPEED_TEST = SpeedTestConfig()
STORAGE = StorageConfig()


# Allowed commands for subprocess safety
ALLOWED_SUBPROCESS_COMMANDS = frozenset({
    'arp',
    'ip',
    'netstat',
    'powershell',
    'osascript',
    'pkexec',
    'ss',
})
