"""Configuration module for the NetPulse engine.

Provides centralized constants, logging, exceptions and the command runner.
"""
from config.constants import (
    ALLOWED_SUBPROCESS_COMMANDS,
    INTERVALS,
    NETWORK,
    SPEED_TEST,
    STORAGE,
    Intervals,
    NetworkConfig,
    SpeedTestConfig,
    StorageConfig,
)
from config.exceptions import (
    AlreadyRunning,
    CommandError,
    ConfigurationError,
    DataAccessFailed,
    DiscoveryError,
    DownloadFailed,
    ElevationCancelled,
    ElevationCommandFailed,
    ElevationError,
    NetPulseError,
    PingFailed,
    SpeedTestError,
    UploadFailed,
)
from config.logging_config import LogContext, get_logger, setup_logging
from config.subprocess_cache import (
    SubprocessCache,
    get_subprocess_cache,
    run_command,
    run_with_fallback,
    safe_run,
)

__all__ = [
    # Constants
    "INTERVALS",
    "NETWORK",
    "SPEED_TEST",
    "STORAGE",
    "Intervals",
    "NetworkConfig",
    "SpeedTestConfig",
    "StorageConfig",
    "ALLOWED_SUBPROCESS_COMMANDS",
    # Exceptions
    "NetPulseError",
    "CommandError",
    "ElevationError",
    "ElevationCancelled",
    "ElevationCommandFailed",
    "SpeedTestError",
    "PingFailed",
    "DownloadFailed",
    "UploadFailed",
    "AlreadyRunning",
    "DataAccessFailed",
    "DiscoveryError",
    "ConfigurationError",
    # Logging
    "setup_logging",
    "get_logger",
    "LogContext",
    # Commands
    "SubprocessCache",
    "get_subprocess_cache",
    "run_command",
    "run_with_fallback",
    "safe_run",
]
