"""Tests for storage/settings.py"""
import json

import pytest

from config.exceptions import ConfigurationError
from storage.settings import EngineSettings, SettingsManager, get_settings_manager


class TestEngineSettings:
    """Tests for EngineSettings validation."""

    def test_defaults_are_valid(self):
        EngineSettings().validate()

    @pytest.mark.parametrize("field,value", [
        ("traffic_interval_seconds", 0.0),
        ("traffic_interval_seconds", "3"),
        ("ping_attempts", 0),
        ("ping_attempts", 2.5),
        ("ping_attempts", True),
        ("probe_concurrency", 300),
        ("download_seconds", -1.0),
        ("vendor_lookup_limit", 21),
    ])
    def test_invalid_values(self, field, value):
        settings = EngineSettings(**{field: value})
        with pytest.raises(ConfigurationError, match=field):
            settings.validate()

    def test_from_dict_ignores_unknown_keys(self):
        settings = EngineSettings.from_dict({"ping_attempts": 7, "theme": "dark"})
        assert settings.ping_attempts == 7

    def test_to_dict_round_trip(self):
        settings = EngineSettings(probe_concurrency=10)
        assert EngineSettings.from_dict(settings.to_dict()) == settings


class TestSettingsManager:
    """Tests for loading and saving settings."""

    def test_defaults_without_file(self, temp_data_dir):
        manager = SettingsManager(temp_data_dir)
        assert manager.settings == EngineSettings()

    def test_update_persists(self, temp_data_dir):
        manager = SettingsManager(temp_data_dir)
        manager.update(traffic_interval_seconds=5.0, ping_attempts=3)
        stored = json.loads((temp_data_dir / "settings.json").read_text())
        assert stored["traffic_interval_seconds"] == 5.0
        assert SettingsManager(temp_data_dir).settings.ping_attempts == 3

    def test_unknown_setting_rejected(self, temp_data_dir):
        manager = SettingsManager(temp_data_dir)
        with pytest.raises(ConfigurationError, match="Unknown setting: colour"):
            manager.update(colour="blue")

    def test_invalid_update_not_saved(self, temp_data_dir):
        manager = SettingsManager(temp_data_dir)
        with pytest.raises(ConfigurationError):
            manager.update(ping_attempts=0)
        assert manager.settings.ping_attempts == EngineSettings().ping_attempts
        assert not (temp_data_dir / "settings.json").exists()

    def test_vendor_limit_cannot_exceed_rate_limit(self, temp_data_dir):
        manager = SettingsManager(temp_data_dir)
        manager.update(vendor_lookup_limit=20)
        with pytest.raises(ConfigurationError, match="vendor_lookup_limit"):
            manager.update(vendor_lookup_limit=254)
        assert manager.settings.vendor_lookup_limit == 20

    def test_stored_vendor_limit_above_cap_ignored(self, temp_data_dir):
        (temp_data_dir / "settings.json").write_text(json.dumps({"vendor_lookup_limit": 254}))
        assert SettingsManager(temp_data_dir).settings.vendor_lookup_limit == 20

    def test_corrupt_file_falls_back_to_defaults(self, temp_data_dir):
        (temp_data_dir / "settings.json").write_text("{not json")
        assert SettingsManager(temp_data_dir).settings == EngineSettings()

    def test_out_of_range_file_falls_back_to_defaults(self, temp_data_dir):
        (temp_data_dir / "settings.json").write_text(json.dumps({"probe_concurrency": 9999}))
        assert SettingsManager(temp_data_dir).settings == EngineSettings()

    def test_settings_property_returns_copy(self, temp_data_dir):
        manager = SettingsManager(temp_data_dir)
        copy = manager.settings
        copy.ping_attempts = 42
        assert manager.settings.ping_attempts != 42

    def test_reset(self, temp_data_dir):
        manager = SettingsManager(temp_data_dir)
        manager.update(ping_attempts=9)
        assert manager.reset() == EngineSettings()
        assert SettingsManager(temp_data_dir).settings == EngineSettings()

    def test_get_settings_manager_uses_data_dir(self, temp_data_dir):
        manager = get_settings_manager(temp_data_dir)
        assert manager.settings_file == temp_data_dir / "settings.json"
