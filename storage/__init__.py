"""Persistence for engine settings."""

from .settings import EngineSettings, SettingsManager, get_settings_manager

__all__ = [
    "EngineSettings",
    "SettingsManager",
    "get_settings_manager",
]
