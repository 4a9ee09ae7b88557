"""Per-OS access to the ARP table, connection table and interface counters.

Each operating system prints its diagnostic commands differently. All of the
text parsing for one OS lives in one ``PlatformProbe`` subclass, selected once
at startup by ``get_platform_probe()``; callers never branch on the platform.

Collection order for the dynamic data:
- Connections: psutil first, then the OS ``netstat`` (or ``ss``) output.
- Interface counters: psutil first, then an OS command.
"""
import re
import sys
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import psutil

from config import INTERVALS, DataAccessFailed, get_logger
from config.subprocess_cache import CommandError, run_command, run_with_fallback
from engine.utils import (
    is_ignored_mac,
    is_ipv4,
    is_remote_candidate,
    normalize_mac,
    unwrap_ipv4,
)

logger = get_logger(__name__)


@dataclass
class ArpEntry:
    """One IPv4 -> MAC mapping read from the OS ARP table."""
    ip: str
    mac: str
    entry_type: str = "unknown"  # dynamic | static | unknown


@dataclass
class ActiveConnection:
    """An established outbound TCP connection."""
    remote_ip: str
    remote_port: int = 0
    pid: Optional[int] = None
    process_name: Optional[str] = None


@dataclass
class CounterSample:
    """Aggregate interface byte counters (all non-loopback interfaces)."""
    bytes_sent: int
    bytes_recv: int
    source: str = "psutil"


def _is_arp_candidate(ip: str, mac: str) -> bool:
    if not is_ipv4(ip) or is_ignored_mac(mac):
        return False
    first_octet = int(ip.split(".")[0])
    if 224 <= first_octet <= 239 or ip == "255.255.255.255":
        return False
    return True


def _is_loopback_nic(name: str) -> bool:
    # lo (Linux), lo0 (macOS), "Loopback Pseudo-Interface 1" (Windows)
    return name.startswith("lo") or name.lower().startswith("loopback")


def _dedupe(entries: List[ArpEntry]) -> List[ArpEntry]:
    seen = set()
    unique = []
    for entry in entries:
        if entry.ip not in seen:
            seen.add(entry.ip)
            unique.append(entry)
    return unique


def _split_port(address: str, separator: str) -> Tuple[Optional[str], int]:
    """Split ``host<sep>port`` from netstat output into (ipv4, port)."""
    if separator not in address:
        return None, 0
    host, _, port = address.rpartition(separator)
    host = host.strip("[]")
    try:
        port_number = int(port)
    except ValueError:
        port_number = 0
    return unwrap_ipv4(host), port_number


class PlatformProbe:
    """Base probe: psutil collection plus per-OS command parsing hooks.

    Subclasses provide the commands and parsers; this class owns the
    fallback order and the failure policy.
    """

    name = "generic"

    def __init__(self) -> None:
        self._process_names: Dict[int, Optional[str]] = {}
        self.counters_access_denied = False

    # ------------------------------------------------------------------
    # Hooks for subclasses
    # ------------------------------------------------------------------

    def arp_commands(self) -> List[List[str]]:
        return [['arp', '-a']]

    def parse_arp(self, output: str) -> List[ArpEntry]:
        raise NotImplementedError

    def connection_commands(self) -> List[List[str]]:
        return [['netstat', '-n']]

    def parse_connections(self, output: str) -> List[ActiveConnection]:
        raise NotImplementedError

    def counter_commands(self) -> List[List[str]]:
        return []

    def parse_counters(self, output: str) -> Optional[Tuple[int, int]]:
        """Return (bytes_sent, bytes_recv) or None if nothing was parsed."""
        return None

    # ------------------------------------------------------------------
    # ARP
    # ------------------------------------------------------------------

    def read_arp_table(self) -> List[ArpEntry]:
        """Read the ARP table. Returns an empty list if no command works."""
        output = run_with_fallback(
            self.arp_commands(),
            timeout=INTERVALS.ARP_TIMEOUT_SECONDS,
            ttl=INTERVALS.ARP_CACHE_TTL_SECONDS,
        )
        if output is None:
            logger.warning(f"No ARP command succeeded on {self.name}")
            return []
        entries = _dedupe(self.parse_arp(output))
        logger.debug(f"Parsed {len(entries)} ARP entries")
        return entries

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def _process_name(self, pid: Optional[int]) -> Optional[str]:
        if not pid:
            return None
        if pid not in self._process_names:
            try:
                self._process_names[pid] = psutil.Process(pid).name()
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                self._process_names[pid] = None
        return self._process_names[pid]

    def _psutil_connections(self) -> List[ActiveConnection]:
        connections = []
        for conn in psutil.net_connections(kind="tcp"):
            if conn.status != psutil.CONN_ESTABLISHED or not conn.raddr:
                continue
            remote_ip = unwrap_ipv4(conn.raddr.ip)
            if not remote_ip or not is_remote_candidate(remote_ip):
                continue
            connections.append(ActiveConnection(
                remote_ip=remote_ip,
                remote_port=conn.raddr.port,
                pid=conn.pid,
                process_name=self._process_name(conn.pid),
            ))
        return connections

    def list_connections(self) -> List[ActiveConnection]:
        """Enumerate established TCP connections to remote IPv4 peers.

        Raises:
            DataAccessFailed: Neither psutil nor any connection command
                produced data.
        """
        access_denied = False
        # Process names are refreshed every enumeration; PIDs get reused.
        self._process_names.clear()

        try:
            return self._psutil_connections()
        except (psutil.AccessDenied, PermissionError) as e:
            access_denied = True
            logger.debug(f"psutil connection table denied: {e}")
        except (psutil.Error, OSError, RuntimeError) as e:
            logger.debug(f"psutil connection table failed: {e}")

        for cmd in self.connection_commands():
            try:
                output = run_command(cmd, timeout=INTERVALS.NETSTAT_TIMEOUT_SECONDS)
            except CommandError as e:
                if e.stderr and "denied" in e.stderr.lower():
                    access_denied = True
                logger.debug(f"Connection command failed: {cmd[0]} - {e.message}")
                continue
            connections = [
                conn for conn in self.parse_connections(output)
                if is_remote_candidate(conn.remote_ip)
            ]
            for conn in connections:
                if conn.process_name is None:
                    conn.process_name = self._process_name(conn.pid)
            return connections

        raise DataAccessFailed(
            "Unable to read the active connection table",
            requires_elevated_privilege=access_denied,
            details={"platform": self.name},
        )

    # ------------------------------------------------------------------
    # Interface counters
    # ------------------------------------------------------------------

    def read_counters(self) -> Optional[CounterSample]:
        """Read aggregate interface byte counters.

        Returns None when no source is accessible; ``counters_access_denied``
        then tells whether elevated privilege might help.
        """
        self.counters_access_denied = False
        try:
            per_nic = psutil.net_io_counters(pernic=True)
            nics = [c for name, c in (per_nic or {}).items() if not _is_loopback_nic(name)]
            if nics:
                return CounterSample(sum(c.bytes_sent for c in nics),
                                     sum(c.bytes_recv for c in nics), "psutil")
        except (psutil.AccessDenied, PermissionError) as e:
            self.counters_access_denied = True
            logger.debug(f"psutil counters denied: {e}")
        except (psutil.Error, OSError, RuntimeError) as e:
            logger.debug(f"psutil counters failed: {e}")

        for cmd in self.counter_commands():
            try:
                output = run_command(cmd, timeout=INTERVALS.NETSTAT_TIMEOUT_SECONDS)
            except CommandError as e:
                if e.stderr and "denied" in e.stderr.lower():
                    self.counters_access_denied = True
                logger.debug(f"Counter command failed: {cmd[0]} - {e.message}")
                continue
            parsed = self.parse_counters(output)
            if parsed is not None:
                sent, recv = parsed
                return CounterSample(sent, recv, cmd[0])

        return None


class WindowsProbe(PlatformProbe):
    """Windows: ``arp -a``, ``netstat -n -o -p TCP``, ``netstat -e``."""

    name = "windows"

    # 192.168.1.1           00-11-22-33-44-55     dynamic
    ARP_PATTERN = re.compile(
        r'^\s*(\d+\.\d+\.\d+\.\d+)\s+'
        r'([0-9a-fA-F]{2}(?:[:-][0-9a-fA-F]{2}){5})\s+(\w+)'
    )

    def arp_commands(self) -> List[List[str]]:
        return [['arp', '-a']]

    def parse_arp(self, output: str) -> List[ArpEntry]:
        entries = []
        for line in output.splitlines():
            match = self.ARP_PATTERN.match(line)
            if not match:
                continue
            ip, raw_mac, kind = match.groups()
            mac = normalize_mac(raw_mac)
            if not _is_arp_candidate(ip, mac):
                continue
            kind = kind.lower()
            entries.append(ArpEntry(
                ip=ip, mac=mac,
                entry_type=kind if kind in ("dynamic", "static") else "unknown",
            ))
        return entries

    def connection_commands(self) -> List[List[str]]:
        return [['netstat', '-n', '-o', '-p', 'TCP']]

    def parse_connections(self, output: str) -> List[ActiveConnection]:
        # TCP    192.168.1.5:54321      142.250.1.1:443        ESTABLISHED     4242
        connections = []
        for line in output.splitlines():
            parts = line.split()
            if len(parts) < 4 or parts[0].upper() != 'TCP' or parts[3] != 'ESTABLISHED':
                continue
            remote_ip, port = _split_port(parts[2], ':')
            if not remote_ip:
                continue
            pid = int(parts[4]) if len(parts) > 4 and parts[4].isdigit() else None
            connections.append(ActiveConnection(remote_ip=remote_ip, remote_port=port, pid=pid))
        return connections

    def counter_commands(self) -> List[List[str]]:
        return [['netstat', '-e']]

    def parse_counters(self, output: str) -> Optional[Tuple[int, int]]:
        # Bytes                    123456789       98765432   (received, sent)
        for line in output.splitlines():
            parts = line.split()
            if len(parts) >= 3 and parts[0] == 'Bytes' and parts[1].isdigit() and parts[2].isdigit():
                return int(parts[2]), int(parts[1])
        return None


class MacProbe(PlatformProbe):
    """macOS and the BSDs: ``arp -an``, ``netstat -n -p tcp``, ``netstat -ib``."""

    name = "macos"

    # ? (192.168.1.1) at 0:11:22:33:44:55 on en0 ifscope [ethernet]
    ARP_PATTERN = re.compile(
        r'\((\d+\.\d+\.\d+\.\d+)\)\s+at\s+([0-9a-fA-F]{1,2}(?::[0-9a-fA-F]{1,2}){5})'
    )

    def arp_commands(self) -> List[List[str]]:
        return [['arp', '-an']]

    def parse_arp(self, output: str) -> List[ArpEntry]:
        entries = []
        for line in output.splitlines():
            match = self.ARP_PATTERN.search(line)
            if not match:
                continue
            ip = match.group(1)
            mac = normalize_mac(match.group(2))
            if not _is_arp_candidate(ip, mac):
                continue
            entry_type = "static" if "permanent" in line.lower() else "dynamic"
            entries.append(ArpEntry(ip=ip, mac=mac, entry_type=entry_type))
        return entries

    def connection_commands(self) -> List[List[str]]:
        return [['netstat', '-n', '-p', 'tcp']]

    def parse_connections(self, output: str) -> List[ActiveConnection]:
        # tcp4  0  0  192.168.1.5.54321  142.250.1.1.443  ESTABLISHED
        connections = []
        for line in output.splitlines():
            parts = line.split()
            if len(parts) < 6 or not parts[0].startswith('tcp') or parts[5] != 'ESTABLISHED':
                continue
            remote_ip, port = _split_port(parts[4], '.')
            if remote_ip:
                connections.append(ActiveConnection(remote_ip=remote_ip, remote_port=port))
        return connections

    def counter_commands(self) -> List[List[str]]:
        return [['netstat', '-ib']]

    def parse_counters(self, output: str) -> Optional[Tuple[int, int]]:
        lines = output.splitlines()
        if not lines:
            return None
        header = lines[0].split()
        if 'Ibytes' not in header or 'Obytes' not in header:
            return None
        # Rows without an Address column are shorter, so index from the end.
        ibytes_back = len(header) - header.index('Ibytes')
        obytes_back = len(header) - header.index('Obytes')

        sent = recv = 0
        found = False
        seen = set()
        for line in lines[1:]:
            parts = line.split()
            if len(parts) < ibytes_back or '<Link#' not in line:
                continue
            name = parts[0].rstrip('*')
            if name.startswith('lo') or name in seen:
                continue
            try:
                recv += int(parts[-ibytes_back])
                sent += int(parts[-obytes_back])
            except ValueError:
                continue
            seen.add(name)
            found = True
        return (sent, recv) if found else None


class LinuxProbe(PlatformProbe):
    """Linux: ``ip neigh`` / ``arp -an``, ``netstat -tn`` / ``ss -tn``, ``ip -s link``."""

    name = "linux"

    # 192.168.1.1 dev eth0 lladdr 00:11:22:33:44:55 REACHABLE
    NEIGH_PATTERN = re.compile(
        r'^(\d+\.\d+\.\d+\.\d+)\s+.*\blladdr\s+([0-9a-fA-F]{2}(?::[0-9a-fA-F]{2}){5})\s*(\w*)'
    )
    # ? (192.168.1.1) at 00:11:22:33:44:55 [ether] on eth0
    ARP_PATTERN = MacProbe.ARP_PATTERN
    IFACE_PATTERN = re.compile(r'^\d+:\s+([^:@\s]+)')

    def arp_commands(self) -> List[List[str]]:
        return [['ip', 'neigh', 'show'], ['arp', '-an']]

    def parse_arp(self, output: str) -> List[ArpEntry]:
        entries = []
        for line in output.splitlines():
            match = self.NEIGH_PATTERN.match(line.strip())
            if match:
                ip, raw_mac, state = match.groups()
                entry_type = "static" if state.upper() == "PERMANENT" else "dynamic"
            else:
                match = self.ARP_PATTERN.search(line)
                if not match:
                    continue
                ip, raw_mac = match.group(1), match.group(2)
                entry_type = "static" if " PERM " in f" {line} " else "dynamic"
            mac = normalize_mac(raw_mac)
            if _is_arp_candidate(ip, mac):
                entries.append(ArpEntry(ip=ip, mac=mac, entry_type=entry_type))
        return entries

    def connection_commands(self) -> List[List[str]]:
        return [['netstat', '-tn'], ['ss', '-tn']]

    def parse_connections(self, output: str) -> List[ActiveConnection]:
        connections = []
        for line in output.splitlines():
            parts = line.split()
            if len(parts) < 5:
                continue
            if parts[0].startswith('tcp') and len(parts) >= 6 and parts[5] == 'ESTABLISHED':
                remote = parts[4]
            elif parts[0] == 'ESTAB':
                remote = parts[4]
            else:
                continue
            remote_ip, port = _split_port(remote, ':')
            if remote_ip:
                connections.append(ActiveConnection(remote_ip=remote_ip, remote_port=port))
        return connections

    def counter_commands(self) -> List[List[str]]:
        return [['ip', '-s', 'link']]

    def parse_counters(self, output: str) -> Optional[Tuple[int, int]]:
        sent = recv = 0
        found = False
        iface = None
        pending = None
        for line in output.splitlines():
            match = self.IFACE_PATTERN.match(line)
            if match:
                iface = match.group(1)
                pending = None
                continue
            stripped = line.strip()
            if stripped.startswith('RX:'):
                pending = 'rx'
                continue
            if stripped.startswith('TX:'):
                pending = 'tx'
                continue
            if pending and iface and iface != 'lo':
                first = stripped.split()[0] if stripped else ''
                if first.isdigit():
                    if pending == 'rx':
                        recv += int(first)
                    else:
                        sent += int(first)
                    found = True
            pending = None
        return (sent, recv) if found else None


def get_platform_probe(platform: Optional[str] = None) -> PlatformProbe:
    """Select the probe for ``platform`` (defaults to ``sys.platform``)."""
    platform = platform or sys.platform
    if platform == "win32":
        probe: PlatformProbe = WindowsProbe()
    elif platform == "darwin" or "bsd" in platform:
        probe = MacProbe()
    else:
        probe = LinuxProbe()
    logger.debug(f"Using {probe.name} platform probe")
    return probe
