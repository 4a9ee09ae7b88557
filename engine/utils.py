"""Shared helpers for the engine: address handling and byte formatting.

Example:
    >>> normalize_mac("AA-BB-CC-DD-EE-FF")
    'aa:bb:cc:dd:ee:ff'
    >>> format_bytes(1500000)
    '1.4 MB'
"""

from __future__ import annotations

import ipaddress
import re
from typing import List, Optional, Union

NumericValue = Union[int, float]

BROADCAST_MAC = "ff:ff:ff:ff:ff:ff"
EMPTY_MAC = "00:00:00:00:00:00"

_IPV4_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")


def normalize_mac(mac_address: str) -> str:
    """Normalize a MAC address to lowercase ``aa:bb:cc:dd:ee:ff``.

    Accepts colon, hyphen or dot separators and octets without a leading
    zero (macOS prints ``0:1a:...``). Input that is not six octets is only
    lowercased.

    Examples:
        >>> normalize_mac("0:1A:2b:3:4:5")
        '00:1a:2b:03:04:05'
        >>> normalize_mac("AA-BB-CC-DD-EE-FF")
        'aa:bb:cc:dd:ee:ff'
    """
    mac_clean = mac_address.strip().lower().replace("-", ":").replace(".", ":")
    parts = mac_clean.split(":")
    if len(parts) == 6 and all(1 <= len(p) <= 2 for p in parts):
        return ":".join(p.zfill(2) for p in parts)
    return mac_address.strip().lower()


def mac_prefix(mac_address: str) -> str:
    """Return the OUI (first three octets) of a normalized MAC address."""
    return ":".join(normalize_mac(mac_address).split(":")[:3])


def is_ignored_mac(mac_address: str) -> bool:
    """True for broadcast, all-zero (incomplete) and multicast MACs."""
    mac = normalize_mac(mac_address)
    if mac in (BROADCAST_MAC, EMPTY_MAC):
        return True
    try:
        first_octet = int(mac.split(":")[0], 16)
    except ValueError:
        return True
    return bool(first_octet & 0x01)


def is_ipv4(value: Optional[str]) -> bool:
    """True if ``value`` is a well-formed dotted-quad IPv4 address."""
    if not value or not _IPV4_RE.match(value):
        return False
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


def unwrap_ipv4(value: Optional[str]) -> Optional[str]:
    """Return the IPv4 form of ``value``, unwrapping ``::ffff:a.b.c.d``."""
    if not value:
        return None
    value = value.split("%", 1)[0]
    if is_ipv4(value):
        return value
    try:
        mapped = ipaddress.IPv6Address(value).ipv4_mapped
    except ValueError:
        return None
    return str(mapped) if mapped else None


def is_remote_candidate(ip: str) -> bool:
    """True for an IPv4 peer worth tracking (not loopback/unspecified/multicast)."""
    if not is_ipv4(ip):
        return False
    addr = ipaddress.IPv4Address(ip)
    return not (addr.is_loopback or addr.is_unspecified or addr.is_multicast)


def subnet_targets(local_ip: str) -> List[str]:
    """All host addresses ``.1`` to ``.254`` of the /24 containing ``local_ip``.

    Returns an empty list for anything that is not a dotted-quad IPv4.

    Example:
        >>> targets = subnet_targets("192.168.1.50")
        >>> targets[0], targets[-1], len(targets)
        ('192.168.1.1', '192.168.1.254', 254)
    """
    if not is_ipv4(local_ip):
        return []
    prefix = ".".join(local_ip.split(".")[:3])
    return [f"{prefix}.{host}" for host in range(1, 255)]


def format_bytes(bytes_value: NumericValue, speed: bool = False) -> str:
    """Format a byte count with binary units (``speed`` appends ``/s``).

    Examples:
        >>> format_bytes(0)
        '0 B'
        >>> format_bytes(1024, speed=True)
        '1.0 KB/s'
    """
    suffix = "/s" if speed else ""
    if bytes_value == 0:
        return f"0 B{suffix}"

    value = float(bytes_value)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(value) < 1024.0:
            return f"{value:.1f} {unit}{suffix}"
        value /= 1024.0
    return f"{value:.1f} PB{suffix}"


__all__ = [
    "BROADCAST_MAC",
    "format_bytes",
    "is_ignored_mac",
    "is_ipv4",
    "is_remote_candidate",
    "mac_prefix",
    "normalize_mac",
    "subnet_targets",
    "unwrap_ipv4",
]
