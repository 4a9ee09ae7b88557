"""Pytest configuration and shared fixtures.

This module provides:
- Common fixtures for data directories, fake probes and canned command output
- Pytest markers for test categorization (unit, integration, slow)
"""
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest

from app.events import EventBus
from config.subprocess_cache import get_subprocess_cache
from engine.platform_probe import ActiveConnection, ArpEntry, CounterSample
from tests.mocks import FakeProbe, ManualClock

# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: mark test as a unit test (fast, isolated)")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture(autouse=True)
def clear_command_cache() -> Generator[None, None, None]:
    """Keep cached command output from leaking between tests."""
    get_subprocess_cache().invalidate()
    yield
    get_subprocess_cache().invalidate()


# =============================================================================
# Directory Fixtures
# =============================================================================


@pytest.fixture
def temp_data_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test data."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# =============================================================================
# Sample Command Output
# =============================================================================


@pytest.fixture
def windows_arp_output() -> str:
    return (
        "\n"
        "Interface: 192.168.1.50 --- 0xb\n"
        "  Internet Address      Physical Address      Type\n"
        "  192.168.1.1           00-11-22-33-44-55     dynamic\n"
        "  192.168.1.20          AA-BB-CC-DD-EE-01     dynamic\n"
        "  192.168.1.30          aa-bb-cc-dd-ee-02     static\n"
        "  192.168.1.255         ff-ff-ff-ff-ff-ff     static\n"
        "  224.0.0.22            01-00-5e-00-00-16     static\n"
        "  239.255.255.250       01-00-5e-7f-ff-fa     static\n"
        "  255.255.255.255       ff-ff-ff-ff-ff-ff     static\n"
    )


@pytest.fixture
def mac_arp_output() -> str:
    return (
        "? (192.168.1.1) at 0:11:22:33:44:55 on en0 ifscope [ethernet]\n"
        "? (192.168.1.20) at AA:BB:CC:DD:EE:1 on en0 ifscope [ethernet]\n"
        "? (192.168.1.21) at (incomplete) on en0 ifscope [ethernet]\n"
        "? (192.168.1.50) at 3c:22:fb:0:0:1 on en0 ifscope permanent [ethernet]\n"
        "? (192.168.1.255) at ff:ff:ff:ff:ff:ff on en0 ifscope [ethernet]\n"
        "? (224.0.0.251) at 1:0:5e:0:0:fb on en0 ifscope permanent [ethernet]\n"
    )


@pytest.fixture
def linux_neigh_output() -> str:
    return (
        "192.168.1.1 dev eth0 lladdr 00:11:22:33:44:55 REACHABLE\n"
        "192.168.1.20 dev eth0 lladdr AA:BB:CC:DD:EE:01 STALE\n"
        "192.168.1.21 dev eth0  FAILED\n"
        "192.168.1.30 dev eth0 lladdr aa:bb:cc:dd:ee:02 PERMANENT\n"
        "fe80::1 dev eth0 lladdr 00:11:22:33:44:55 router REACHABLE\n"
    )


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def sample_arp_entries() -> list:
    return [
        ArpEntry("192.168.1.1", "00:11:22:33:44:55", "dynamic"),
        ArpEntry("192.168.1.20", "aa:bb:cc:dd:ee:01", "dynamic"),
        ArpEntry("192.168.1.30", "aa:bb:cc:dd:ee:02", "static"),
    ]


@pytest.fixture
def fake_probe(sample_arp_entries) -> FakeProbe:
    """Probe with an ARP table, two remote peers and readable counters."""
    return FakeProbe(
        arp=sample_arp_entries,
        connections=[
            ActiveConnection("142.250.1.1", 443, 100, "chrome"),
            ActiveConnection("151.101.1.1", 443, 200, "slack"),
        ],
        counters=CounterSample(bytes_sent=0, bytes_recv=0),
    )


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def sync_event_bus() -> Generator[EventBus, None, None]:
    """Event bus that delivers on the publishing thread."""
    bus = EventBus(async_mode=False)
    yield bus
    bus.shutdown()


@pytest.fixture
def mock_event_bus() -> MagicMock:
    """Create a mock event bus for testing event-driven components."""
    mock_bus = MagicMock()
    mock_bus.publish = MagicMock()
    mock_bus.subscribe = MagicMock()
    return mock_bus


@pytest.fixture
def mock_subprocess() -> Generator[MagicMock, None, None]:
    """Mock subprocess for command execution testing."""
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(
            returncode=0,
            stdout="",
            stderr="",
        )
        yield mock_run
