"""Device discovery - builds the list of devices on the local /24.

Pipeline (strictly ordered, every stage fault tolerant):
1. Subnet probe: TCP connect to every host of the /24 so the OS fills its
   ARP cache. Connection outcomes are ignored.
2. ARP table scan through the platform probe.
3. Reverse DNS for every discovered IP, in parallel.
4. MAC vendor lookup, rate limited and cached by OUI.
"""
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass
from typing import Callable, Dict, Iterable, List, Optional
from http.client import HTTPException
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from config import NETWORK, LogContext, get_logger
from engine.platform_probe import PlatformProbe, get_platform_probe
from engine.utils import is_ipv4, mac_prefix, subnet_targets

logger = get_logger(__name__)


@dataclass
class Device:
    """A device seen in the ARP table. Identity is ``ip``."""
    ip: str
    mac: str
    type: str = "unknown"
    hostname: str = ""
    vendor: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def _probe_one(ip: str, port: int, timeout: float, connect: Callable) -> None:
    try:
        sock = connect((ip, port), timeout=timeout)
    except OSError:
        return
    sock.close()


def probe_subnet(local_ip: str, port: int = NETWORK.PROBE_PORT,
                 concurrency: int = NETWORK.PROBE_CONCURRENCY,
                 timeout: float = NETWORK.PROBE_TIMEOUT_SECONDS,
                 connect: Optional[Callable] = None) -> List[str]:
    """Attempt a TCP connection to every host of ``local_ip``'s /24.

    Blocks until every attempt has finished and its socket is closed. At most
    ``concurrency`` attempts are in flight.

    Returns:
        The addresses that were probed.
    """
    connect = connect or socket.create_connection
    targets = subnet_targets(local_ip)
    if not targets:
        return []

    with ThreadPoolExecutor(max_workers=max(1, concurrency),
                            thread_name_prefix="subnet-probe") as executor:
        list(executor.map(lambda ip: _probe_one(ip, port, timeout, connect), targets))

    logger.debug(f"Probed {len(targets)} hosts on port {port}")
    return targets


def _reverse_lookup(ip: str, resolver: Callable) -> str:
    try:
        hostname, _, _ = resolver(ip)
    except (OSError, UnicodeError):
        return ""
    return hostname or ""


def resolve_hostnames(ips: Iterable[str],
                      timeout: float = NETWORK.HOSTNAME_RESOLVE_TIMEOUT,
                      workers: int = NETWORK.HOSTNAME_RESOLVE_WORKERS,
                      resolver: Optional[Callable] = None) -> Dict[str, str]:
    """Reverse-resolve IPs in parallel.

    Lookups still pending after ``timeout`` seconds are abandoned and yield
    an empty hostname, as do failed lookups.
    """
    resolver = resolver or socket.gethostbyaddr
    ips = list(ips)
    hostnames = {ip: "" for ip in ips}
    if not ips:
        return hostnames

    executor = ThreadPoolExecutor(max_workers=max(1, min(workers, len(ips))),
                                  thread_name_prefix="reverse-dns")
    try:
        futures = {executor.submit(_reverse_lookup, ip, resolver): ip for ip in ips}
        done, pending = wait(futures, timeout=timeout)
        for future in done:
            hostnames[futures[future]] = future.result()
        if pending:
            logger.debug(f"{len(pending)} reverse lookups timed out")
    finally:
        # gethostbyaddr cannot be interrupted; leave stragglers behind.
        executor.shutdown(wait=False, cancel_futures=True)
    return hostnames


class VendorLookup:
    """MAC vendor lookup against api.macvendors.com.

    Results are cached by OUI for the life of the process. The service is
    rate limited, so each ``lookup_many`` call issues at most ``limit``
    requests, one at a time, ``delay`` seconds apart.
    """

    def __init__(self, limit: int = NETWORK.VENDOR_LOOKUP_LIMIT,
                 delay: float = NETWORK.VENDOR_LOOKUP_DELAY_SECONDS,
                 timeout: float = NETWORK.VENDOR_LOOKUP_TIMEOUT,
                 opener: Optional[Callable] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.limit = limit
        self.delay = delay
        self.timeout = timeout
        self._opener = opener or urlopen
        self._sleep = sleep
        self._cache: Dict[str, str] = {}
        self._lock = threading.Lock()

    def cached(self, mac: str) -> Optional[str]:
        with self._lock:
            return self._cache.get(mac_prefix(mac))

    def _fetch(self, mac: str) -> Optional[str]:
        """Query the service. None means "try again on a later run"."""
        url = NETWORK.VENDOR_LOOKUP_URL.format(mac=mac)
        req = Request(url, headers={'User-Agent': NETWORK.USER_AGENT})
        try:
            with self._opener(req, timeout=self.timeout) as response:
                if getattr(response, "status", 200) != 200:
                    return None
                return response.read().decode("utf-8", errors="replace").strip()
        except HTTPError as e:
            if e.code == 404:
                # Unknown OUI: a definite answer, remember it.
                return ""
            logger.debug(f"Vendor lookup for {mac} returned HTTP {e.code}")
        except (URLError, HTTPException, OSError, ValueError) as e:
            logger.debug(f"Vendor lookup for {mac} failed: {e}")
        return None

    def lookup_many(self, macs: Iterable[str]) -> Dict[str, str]:
        """Return ``{mac: vendor}`` for every MAC; unknown vendors are ""."""
        macs = list(macs)
        by_prefix: Dict[str, str] = {}
        for mac in macs:
            by_prefix.setdefault(mac_prefix(mac), mac)

        requests_made = 0
        for prefix, mac in by_prefix.items():
            if self.cached(mac) is not None:
                continue
            if requests_made >= self.limit:
                logger.debug(f"Vendor lookup limit of {self.limit} reached")
                break
            if requests_made:
                self._sleep(self.delay)
            requests_made += 1
            vendor = self._fetch(mac)
            if vendor is not None:
                with self._lock:
                    self._cache[prefix] = vendor

        return {mac: self.cached(mac) or "" for mac in macs}


class DeviceDiscovery:
    """Runs the discovery pipeline against one local interface address."""

    def __init__(self, probe: Optional[PlatformProbe] = None,
                 vendor_lookup: Optional[VendorLookup] = None,
                 probe_concurrency: int = NETWORK.PROBE_CONCURRENCY,
                 settle_seconds: float = NETWORK.ARP_SETTLE_SECONDS,
                 connect: Optional[Callable] = None,
                 resolver: Optional[Callable] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.probe = probe or get_platform_probe()
        self.vendor_lookup = vendor_lookup or VendorLookup()
        self.probe_concurrency = probe_concurrency
        self.settle_seconds = settle_seconds
        self._connect = connect
        self._resolver = resolver
        self._sleep = sleep

    def discover(self, local_ip: Optional[str]) -> List[Device]:
        """Discover devices on ``local_ip``'s /24.

        Returns an empty list when there is no usable local IPv4 address.
        Individual stage failures only leave device fields empty.
        """
        if not local_ip or not is_ipv4(local_ip):
            logger.info("No local IPv4 interface, skipping discovery")
            return []

        with LogContext(logger, f"Discovery on {local_ip}/24"):
            try:
                probe_subnet(local_ip, concurrency=self.probe_concurrency,
                             connect=self._connect)
            except RuntimeError as e:
                # Thread creation can fail under resource pressure.
                logger.warning(f"Subnet probe failed: {e}")
            self._sleep(self.settle_seconds)

            entries = self.probe.read_arp_table()
            devices = [Device(ip=e.ip, mac=e.mac, type=e.entry_type) for e in entries]
            if not devices:
                return devices

            try:
                hostnames = resolve_hostnames([d.ip for d in devices],
                                              resolver=self._resolver)
            except RuntimeError as e:
                logger.warning(f"Reverse DNS failed: {e}")
                hostnames = {}

            vendors = self.vendor_lookup.lookup_many([d.mac for d in devices])

            for device in devices:
                device.hostname = hostnames.get(device.ip, "")
                device.vendor = vendors.get(device.mac, "")

        logger.info(f"Discovered {len(devices)} devices")
        return devices
