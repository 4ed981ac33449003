"""Build an `ActivityContext` from raw request data.

The authentication layer usually hands the engine a ready context; this module is
the convenience path for hosts that only have the remote address, the headers and
the User-Agent string.
"""

from __future__ import annotations

import ipaddress
from datetime import datetime, timezone
from typing import Mapping, Protocol

import geoip2.database
import geoip2.errors
from user_agents import parse as parse_user_agent

from common.logging_utils import get_logger
from common.models import UNKNOWN, ActivityContext, GeoLocation, UserAgentInfo


logger = get_logger(__name__)


class GeoResolver(Protocol):
    def resolve(self, ip: str) -> GeoLocation: ...


class NullGeoResolver:
    def resolve(self, ip: str) -> GeoLocation:
        return GeoLocation()


def is_public_ip(ip: str) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return addr.is_global


class GeoIP2Resolver:
    """City-level lookup against a MaxMind GeoIP2/GeoLite2 database file."""

    def __init__(self, db_path: str) -> None:
        self._reader = geoip2.database.Reader(db_path)
        logger.info("GeoIP database loaded path=%s", db_path)

    def resolve(self, ip: str) -> GeoLocation:
        if not is_public_ip(ip):
            return GeoLocation()
        try:
            resp = self._reader.city(ip)
        except geoip2.errors.AddressNotFoundError:
            return GeoLocation()

        subdivision = resp.subdivisions.most_specific
        return GeoLocation(
            country=resp.country.iso_code or UNKNOWN,
            region=subdivision.iso_code or UNKNOWN,
            city=resp.city.name or UNKNOWN,
        )

    def close(self) -> None:
        self._reader.close()


def client_ip(headers: Mapping[str, str], remote_addr: str | None) -> str:
    """First hop of X-Forwarded-For, else the socket peer address."""

    for name, value in headers.items():
        if name.lower() == "x-forwarded-for" and value:
            first = value.split(",")[0].strip()
            if first:
                return first
    return (remote_addr or "").strip() or UNKNOWN


def _device_class(parsed: object) -> str:
    if getattr(parsed, "is_bot", False):
        return "bot"
    if getattr(parsed, "is_tablet", False):
        return "tablet"
    if getattr(parsed, "is_mobile", False):
        return "mobile"
    return "desktop"


def parse_user_agent_info(user_agent: str | None) -> UserAgentInfo:
    if not user_agent or not user_agent.strip():
        return UserAgentInfo()

    parsed = parse_user_agent(user_agent)
    browser = f"{parsed.browser.family or UNKNOWN} {parsed.browser.version_string or ''}".strip()
    os_name = f"{parsed.os.family or UNKNOWN} {parsed.os.version_string or ''}".strip()
    return UserAgentInfo(
        browser=browser,
        os=os_name,
        device_class=_device_class(parsed),
        raw=user_agent,
    )


def extract_context(
    user_id: str,
    ip: str,
    user_agent: str | None,
    *,
    timestamp: datetime | None = None,
    geo_resolver: GeoResolver | None = None,
) -> ActivityContext:
    resolver = geo_resolver or NullGeoResolver()
    return ActivityContext(
        user_id=user_id,
        ip=ip,
        user_agent=parse_user_agent_info(user_agent),
        geo=resolver.resolve(ip),
        timestamp=timestamp or datetime.now(timezone.utc),
    )


__all__ = [
    "GeoIP2Resolver",
    "GeoResolver",
    "NullGeoResolver",
    "client_ip",
    "extract_context",
    "is_public_ip",
    "parse_user_agent_info",
]
