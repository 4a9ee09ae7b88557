"""Network info aggregator.

Combines the public IP lookup, local interface enumeration and host stats
(gathered concurrently) with a device discovery run on the first local
interface into one snapshot.
"""
import os
import platform
import socket
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

import psutil

from config import DiscoveryError, LogContext, NetPulseError, get_logger
from engine.discovery import Device, DeviceDiscovery
from engine.geolocation import PublicInfo, fetch_public_info
from engine.utils import is_ipv4, normalize_mac

logger = get_logger(__name__)


@dataclass
class LocalInterface:
    """A non-loopback IPv4 interface of this host."""
    name: str
    ip: str
    mac: str = ""
    netmask: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class SystemInfo:
    """Point-in-time host statistics."""
    hostname: str = ""
    platform: str = ""
    arch: str = ""
    uptime_seconds: float = 0.0
    total_memory_bytes: int = 0
    free_memory_bytes: int = 0
    cpu_model: str = ""
    cpu_cores: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class NetworkInfoSnapshot:
    public: PublicInfo
    local: List[LocalInterface] = field(default_factory=list)
    system: SystemInfo = field(default_factory=SystemInfo)
    devices: List[Device] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "public": self.public.to_dict(),
            "local": [iface.to_dict() for iface in self.local],
            "system": self.system.to_dict(),
            "devices": [device.to_dict() for device in self.devices],
        }


def list_local_interfaces() -> List[LocalInterface]:
    """Enumerate non-loopback interfaces that have an IPv4 address."""
    try:
        addresses = psutil.net_if_addrs()
        stats = psutil.net_if_stats()
    except (psutil.Error, OSError) as e:
        logger.debug(f"Could not enumerate interfaces: {e}")
        return []

    interfaces = []
    for name, addrs in addresses.items():
        if name in stats and not stats[name].isup:
            continue
        mac = ""
        for addr in addrs:
            if addr.family == psutil.AF_LINK and addr.address:
                mac = normalize_mac(addr.address)
        for addr in addrs:
            if addr.family != socket.AF_INET or not is_ipv4(addr.address):
                continue
            if addr.address.startswith("127."):
                continue
            interfaces.append(LocalInterface(
                name=name, ip=addr.address, mac=mac, netmask=addr.netmask or "",
            ))
    return interfaces


def _cpu_model() -> str:
    if sys.platform.startswith("linux"):
        cpuinfo = Path("/proc/cpuinfo")
        try:
            for line in cpuinfo.read_text(errors="ignore").splitlines():
                if line.lower().startswith("model name"):
                    return line.split(":", 1)[1].strip()
        except OSError:
            pass
    return platform.processor() or platform.machine()


def collect_system_info() -> SystemInfo:
    """Collect host statistics. Fields that cannot be read stay empty."""
    info = SystemInfo(
        hostname=socket.gethostname(),
        platform=sys.platform,
        arch=platform.machine(),
        cpu_model=_cpu_model(),
        cpu_cores=psutil.cpu_count(logical=True) or os.cpu_count() or 0,
    )
    try:
        info.uptime_seconds = round(max(0.0, time.time() - psutil.boot_time()), 1)
        memory = psutil.virtual_memory()
        info.total_memory_bytes = memory.total
        info.free_memory_bytes = memory.available
    except (psutil.Error, OSError) as e:
        logger.debug(f"Could not read system stats: {e}")
    return info


class NetworkInfoAggregator:
    """Builds ``NetworkInfoSnapshot``s."""

    def __init__(self, discovery: Optional[DeviceDiscovery] = None,
                 public_info: Callable[[], PublicInfo] = fetch_public_info,
                 interfaces: Callable[[], List[LocalInterface]] = list_local_interfaces,
                 system_info: Callable[[], SystemInfo] = collect_system_info):
        self.discovery = discovery or DeviceDiscovery()
        self._public_info = public_info
        self._interfaces = interfaces
        self._system_info = system_info

    def _safe_interfaces(self) -> List[LocalInterface]:
        try:
            return self._interfaces()
        except (psutil.Error, OSError) as e:
            logger.debug(f"Interface enumeration failed: {e}")
            return []

    def _safe_system_info(self) -> SystemInfo:
        try:
            return self._system_info()
        except (psutil.Error, OSError) as e:
            logger.debug(f"System info failed: {e}")
            return SystemInfo()

    def gather(self) -> NetworkInfoSnapshot:
        """Collect a full snapshot.

        Raises:
            DiscoveryError: Device discovery failed in a way it could not
                absorb itself.
        """
        with LogContext(logger, "Network info"):
            with ThreadPoolExecutor(max_workers=3, thread_name_prefix="net-info") as executor:
                public_future = executor.submit(self._public_info)
                local_future = executor.submit(self._safe_interfaces)
                system_future = executor.submit(self._safe_system_info)
                public = public_future.result()
                local = local_future.result()
                system = system_future.result()

            local_ip = local[0].ip if local else None
            try:
                devices = self.discovery.discover(local_ip)
            except NetPulseError as e:
                raise DiscoveryError(f"Device discovery failed: {e.message}", e.details) from e
            except Exception as e:
                logger.error(f"Device discovery failed: {e}", exc_info=True)
                raise DiscoveryError(f"Device discovery failed: {e}") from e

        return NetworkInfoSnapshot(public=public, local=local, system=system, devices=devices)
