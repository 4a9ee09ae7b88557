"""Public IP and geolocation lookup (ipinfo.io).

Any failure yields a ``PublicInfo`` with ``ip`` = "Unknown" and empty
strings elsewhere; this lookup never raises.
"""

import json
from dataclasses import asdict, dataclass
from typing import Callable, Optional
from http.client import HTTPException
from urllib.error import URLError
from urllib.request import Request, urlopen

from config import NETWORK, get_logger

logger = get_logger(__name__)

UNKNOWN_IP = "Unknown"


@dataclass
class PublicInfo:
    """Public address of this host and where the provider places it."""
    ip: str = UNKNOWN_IP
    city: str = ""
    region: str = ""
    country: str = ""
    org: str = ""
    timezone: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_response(cls, data: object) -> "PublicInfo":
        """Build from a decoded response, ignoring missing or odd fields."""
        if not isinstance(data, dict):
            return cls()

        def text(key: str, default: str = "") -> str:
            value = data.get(key)
            if value is None or isinstance(value, (dict, list)):
                return default
            return str(value).strip() or default

        return cls(
            ip=text("ip", UNKNOWN_IP),
            city=text("city"),
            region=text("region"),
            country=text("country"),
            org=text("org"),
            timezone=text("timezone"),
        )


def fetch_public_info(url: str = NETWORK.GEOLOCATION_URL,
                      timeout: float = NETWORK.GEOLOCATION_TIMEOUT,
                      opener: Optional[Callable] = None) -> PublicInfo:
    """Look up the public IP and its location."""
    opener = opener or urlopen
    req = Request(url, headers={
        'User-Agent': NETWORK.USER_AGENT,
        'Accept': 'application/json',
    })
    try:
        with opener(req, timeout=timeout) as response:
            data = json.loads(response.read().decode("utf-8"))
    except (URLError, HTTPException, OSError, ValueError) as e:
        logger.debug(f"Public IP lookup failed: {e}")
        return PublicInfo()

    info = PublicInfo.from_response(data)
    logger.debug(f"Public IP: {info.ip} ({info.country or 'unknown country'})")
    return info
