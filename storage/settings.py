"""Persisted engine settings (``~/.netpulse/settings.json``)."""
import json
import threading
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

from config import INTERVALS, NETWORK, SPEED_TEST, STORAGE, ConfigurationError, get_logger

logger = get_logger(__name__)


@dataclass
class EngineSettings:
    """User-tunable engine settings; defaults come from config.constants."""
    traffic_interval_seconds: float = INTERVALS.TRAFFIC_SAMPLE_SECONDS
    traffic_evict_seconds: float = INTERVALS.TRAFFIC_EVICT_SECONDS
    ping_attempts: int = SPEED_TEST.PING_ATTEMPTS
    download_seconds: float = SPEED_TEST.DOWNLOAD_SECONDS
    upload_seconds: float = SPEED_TEST.UPLOAD_SECONDS
    probe_concurrency: int = NETWORK.PROBE_CONCURRENCY
    vendor_lookup_limit: int = NETWORK.VENDOR_LOOKUP_LIMIT

    # name -> (minimum, maximum)
    LIMITS = {
        "traffic_interval_seconds": (0.5, 300.0),
        "traffic_evict_seconds": (5.0, 3600.0),
        "ping_attempts": (1, 50),
        "download_seconds": (1.0, 120.0),
        "upload_seconds": (1.0, 120.0),
        "probe_concurrency": (1, 254),
        "vendor_lookup_limit": (0, NETWORK.VENDOR_LOOKUP_LIMIT),
    }

    def validate(self) -> None:
        """Raise ConfigurationError if any value is out of range."""
        for f in fields(self):
            value = getattr(self, f.name)
            low, high = self.LIMITS[f.name]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"Invalid {f.name}: not a number", {"value": value})
            if f.type is int and not isinstance(value, int):
                raise ConfigurationError(f"Invalid {f.name}: must be an integer", {"value": value})
            if not low <= value <= high:
                raise ConfigurationError(
                    f"Invalid {f.name}: must be between {low} and {high}",
                    {"value": value},
                )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EngineSettings":
        """Build from stored data; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


class SettingsManager:
    """Loads, validates and saves ``EngineSettings``."""

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir
        self.settings_file = data_dir / STORAGE.SETTINGS_FILE
        self._lock = threading.Lock()
        self._settings = EngineSettings()
        self._load()

    def _load(self) -> None:
        """Load settings, falling back to defaults if the file is unusable."""
        if not self.settings_file.exists():
            return
        try:
            with open(self.settings_file, 'r') as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("settings file is not a JSON object")
            settings = EngineSettings.from_dict(data)
            settings.validate()
        except (OSError, ValueError, TypeError, ConfigurationError) as e:
            logger.warning(f"Could not load settings, using defaults: {e}")
            settings = EngineSettings()
        self._settings = settings

    def _save(self) -> None:
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(self.settings_file, 'w') as f:
                json.dump(self._settings.to_dict(), f, indent=2)
        except OSError as e:
            logger.error(f"Error saving settings: {e}")

    @property
    def settings(self) -> EngineSettings:
        """A copy of the current settings."""
        with self._lock:
            return replace(self._settings)

    def update(self, **changes: Any) -> EngineSettings:
        """Change one or more settings and persist them.

        Raises:
            ConfigurationError: Unknown setting or invalid value. Nothing is
                saved in that case.
        """
        known = {f.name for f in fields(EngineSettings)}
        unknown = set(changes) - known
        if unknown:
            raise ConfigurationError(f"Unknown setting: {sorted(unknown)[0]}")

        with self._lock:
            candidate = replace(self._settings, **changes)
            candidate.validate()
            self._settings = candidate
            self._save()
        logger.info(f"Settings updated: {changes}")
        return replace(candidate)

    def reset(self) -> EngineSettings:
        with self._lock:
            self._settings = EngineSettings()
            self._save()
        return EngineSettings()


def get_settings_manager(data_dir: Optional[Path] = None) -> SettingsManager:
    """Create a settings manager for ``data_dir`` (default ``~/.netpulse``)."""
    if data_dir is None:
        data_dir = Path.home() / STORAGE.DATA_DIR_NAME
    return SettingsManager(data_dir)
