"""Best-effort per-IP traffic estimation.

Per-IP byte counts cannot be observed without packet capture. Every tick
combines the established TCP connections with the host's aggregate
interface counters and tags each record with how much it can be trusted:

- ESTIMATED: the counter delta since the previous tick is split evenly
  across the remote IPs with an open connection. This is an approximation
  and does not reflect how traffic is really distributed between peers.
- CONNECTION_ONLY: the IP has (or had) a connection but there is nothing to
  attribute bytes from, so speeds are zero. The first tick after start is
  always CONNECTION_ONLY because a counter delta needs two samples. When the
  counters were refused by the OS, ``counters_require_elevated_privilege``
  is set.
- UNAVAILABLE: the connection table could not be read. Speeds are zeroed
  and ``get_traffic_data()`` raises ``DataAccessFailed`` until a later tick
  succeeds.

Numbers are never invented: an idle or unknown value is reported as zero
with the matching quality tag.
"""
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from config import INTERVALS, DataAccessFailed, get_logger
from engine.platform_probe import CounterSample, PlatformProbe, get_platform_probe
from engine.utils import format_bytes, is_ipv4

logger = get_logger(__name__)


class DataQuality(Enum):
    ESTIMATED = "estimated"
    CONNECTION_ONLY = "connection_only"
    UNAVAILABLE = "unavailable"


@dataclass
class TrafficRecord:
    """Traffic estimate for one remote or local IP."""
    ip: str
    last_seen_epoch_ms: int
    download_speed_bps: float = 0.0
    upload_speed_bps: float = 0.0
    total_download_bytes: int = 0
    total_upload_bytes: int = 0
    data_quality: DataQuality = DataQuality.CONNECTION_ONLY
    processes: List[str] = field(default_factory=list)

    @property
    def is_idle(self) -> bool:
        return self.download_speed_bps == 0 and self.upload_speed_bps == 0

    def to_dict(self) -> dict:
        return {
            "ip": self.ip,
            "download_speed_bps": self.download_speed_bps,
            "upload_speed_bps": self.upload_speed_bps,
            "total_download_bytes": self.total_download_bytes,
            "total_upload_bytes": self.total_upload_bytes,
            "last_seen_epoch_ms": self.last_seen_epoch_ms,
            "data_quality": self.data_quality.value,
            "processes": list(self.processes),
        }

    def copy(self) -> "TrafficRecord":
        return TrafficRecord(
            ip=self.ip,
            last_seen_epoch_ms=self.last_seen_epoch_ms,
            download_speed_bps=self.download_speed_bps,
            upload_speed_bps=self.upload_speed_bps,
            total_download_bytes=self.total_download_bytes,
            total_upload_bytes=self.total_upload_bytes,
            data_quality=self.data_quality,
            processes=list(self.processes),
        )


class TrafficEstimator:
    """Owns the traffic table and updates it one tick at a time.

    ``tick()`` is driven by a background timer owned by the caller; readers
    get copies taken under the table lock.
    """

    def __init__(self, probe: Optional[PlatformProbe] = None,
                 evict_after_seconds: float = INTERVALS.TRAFFIC_EVICT_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.probe = probe or get_platform_probe()
        self.evict_after_seconds = evict_after_seconds
        self._clock = clock
        self._records: Dict[str, TrafficRecord] = {}
        self._lock = threading.Lock()
        self._baseline: Optional[Tuple[CounterSample, float]] = None
        self._last_error: Optional[DataAccessFailed] = None
        self.last_quality: Optional[DataQuality] = None
        # Counters were unreadable and elevated privilege might unlock them
        self.counters_require_elevated_privilege = False

    # ------------------------------------------------------------------
    # Table maintenance
    # ------------------------------------------------------------------

    def seed_devices(self, ips: Iterable[str]) -> int:
        """Add zero-traffic rows for known devices; existing rows are kept."""
        now_ms = int(self._clock() * 1000)
        added = 0
        with self._lock:
            for ip in ips:
                if is_ipv4(ip) and ip not in self._records:
                    self._records[ip] = TrafficRecord(ip=ip, last_seen_epoch_ms=now_ms)
                    added += 1
        if added:
            logger.debug(f"Seeded {added} devices into the traffic table")
        return added

    def _evict(self, now: float) -> None:
        """Drop idle records not seen within the threshold. Caller holds the lock."""
        cutoff_ms = (now - self.evict_after_seconds) * 1000
        stale = [
            ip for ip, record in self._records.items()
            if record.is_idle and record.last_seen_epoch_ms < cutoff_ms
        ]
        for ip in stale:
            del self._records[ip]
        if stale:
            logger.debug(f"Evicted {len(stale)} idle traffic records")

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._baseline = None
            self._last_error = None
            self.last_quality = None
            self.counters_require_elevated_privilege = False

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def _mark_unavailable(self, error: DataAccessFailed, now: float) -> None:
        with self._lock:
            for record in self._records.values():
                record.download_speed_bps = 0.0
                record.upload_speed_bps = 0.0
                record.data_quality = DataQuality.UNAVAILABLE
            # Counter deltas across an outage would be attributed wrongly.
            self._baseline = None
            self._last_error = error
            self.last_quality = DataQuality.UNAVAILABLE
            self._evict(now)

    def _counter_delta(self, counters: Optional[CounterSample],
                       now: float) -> Optional[Tuple[int, int, float]]:
        """(received, sent, seconds) since the previous sample, if there is one."""
        previous = self._baseline
        self._baseline = (counters, now) if counters is not None else None
        if counters is None or previous is None:
            return None
        last, last_time = previous
        elapsed = now - last_time
        if elapsed <= 0:
            return None
        # Counters that went backwards were reset; count nothing for this tick.
        received = max(0, counters.bytes_recv - last.bytes_recv)
        sent = max(0, counters.bytes_sent - last.bytes_sent)
        return received, sent, elapsed

    def tick(self) -> None:
        """Take one sample and update the table."""
        now = self._clock()
        try:
            connections = self.probe.list_connections()
        except DataAccessFailed as e:
            logger.warning(f"Traffic data unavailable: {e.message}")
            self._mark_unavailable(e, now)
            return

        counters = self.probe.read_counters()
        counters_denied = counters is None and self.probe.counters_access_denied

        peers: Dict[str, Set[str]] = {}
        for conn in connections:
            names = peers.setdefault(conn.remote_ip, set())
            if conn.process_name:
                names.add(conn.process_name)

        with self._lock:
            delta = self._counter_delta(counters, now)
            down_share = up_share = 0.0
            elapsed = 0.0
            if delta is None:
                quality = DataQuality.CONNECTION_ONLY
            else:
                quality = DataQuality.ESTIMATED
                received, sent, elapsed = delta
                if peers:
                    down_share = received / len(peers)
                    up_share = sent / len(peers)

            now_ms = int(now * 1000)
            for record in self._records.values():
                if record.ip not in peers:
                    record.download_speed_bps = 0.0
                    record.upload_speed_bps = 0.0
                record.data_quality = quality

            for ip, names in peers.items():
                record = self._records.get(ip)
                if record is None:
                    record = TrafficRecord(ip=ip, last_seen_epoch_ms=now_ms)
                    self._records[ip] = record
                record.last_seen_epoch_ms = now_ms
                record.data_quality = quality
                if names:
                    record.processes = sorted(names)
                if elapsed > 0:
                    record.download_speed_bps = down_share / elapsed
                    record.upload_speed_bps = up_share / elapsed
                    record.total_download_bytes += int(down_share)
                    record.total_upload_bytes += int(up_share)
                else:
                    record.download_speed_bps = 0.0
                    record.upload_speed_bps = 0.0

            self._last_error = None
            self.last_quality = quality
            self.counters_require_elevated_privilege = counters_denied
            self._evict(now)
            count = len(self._records)

        if delta is not None:
            logger.debug(
                f"Traffic tick: {len(peers)} peers, "
                f"down {format_bytes(delta[0] / delta[2], speed=True)}, "
                f"up {format_bytes(delta[1] / delta[2], speed=True)}, {count} records"
            )
        else:
            logger.debug(f"Traffic tick: {len(peers)} peers, no counter delta, {count} records")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, TrafficRecord]:
        """Copy of the table, whatever the state of the last tick."""
        with self._lock:
            self._evict(self._clock())
            return {ip: record.copy() for ip, record in self._records.items()}

    def get_traffic_data(self) -> Dict[str, TrafficRecord]:
        """Copy of the table.

        Raises:
            DataAccessFailed: The most recent tick could not read the
                connection table.
        """
        with self._lock:
            error = self._last_error
        if error is not None:
            raise DataAccessFailed(error.message, error.requires_elevated_privilege)
        return self.snapshot()
