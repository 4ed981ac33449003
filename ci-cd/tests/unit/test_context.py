from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import geoip2.errors
import pytest

import risk.context as context_mod
from common.models import GeoLocation
from risk.context import (
    GeoIP2Resolver,
    client_ip,
    extract_context,
    is_public_ip,
    parse_user_agent_info,
)


CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
GOOGLEBOT = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"


class FakeResolver:
    def __init__(self) -> None:
        self.seen: list[str] = []

    def resolve(self, ip: str) -> GeoLocation:
        self.seen.append(ip)
        return GeoLocation(country="NL", region="NH", city="Amsterdam")


def test_parse_desktop_user_agent() -> None:
    info = parse_user_agent_info(CHROME_WINDOWS)
    assert info.browser.startswith("Chrome 120")
    assert info.os.startswith("Windows")
    assert info.device_class == "desktop"
    assert info.raw == CHROME_WINDOWS


def test_parse_mobile_and_bot_user_agents() -> None:
    assert parse_user_agent_info(SAFARI_IPHONE).device_class == "mobile"
    assert parse_user_agent_info(GOOGLEBOT).device_class == "bot"


def test_missing_user_agent_is_unknown() -> None:
    info = parse_user_agent_info(None)
    assert info.browser == "unknown"
    assert info.device_class == "desktop"
    assert info.raw is None


def test_client_ip_prefers_first_forwarded_hop() -> None:
    headers = {"X-Forwarded-For": "198.51.100.7, 10.0.0.1"}
    assert client_ip(headers, "10.0.0.1") == "198.51.100.7"
    assert client_ip({}, " 10.0.0.2 ") == "10.0.0.2"
    assert client_ip({}, None) == "unknown"


def test_is_public_ip() -> None:
    assert is_public_ip("8.8.8.8")
    assert not is_public_ip("192.168.1.10")
    assert not is_public_ip("not-an-ip")


def test_extract_context_uses_resolver() -> None:
    resolver = FakeResolver()
    at = datetime(2026, 10, 13, 14, 0, tzinfo=timezone.utc)
    ctx = extract_context("alice", "8.8.8.8", CHROME_WINDOWS, timestamp=at, geo_resolver=resolver)

    assert resolver.seen == ["8.8.8.8"]
    assert ctx.location == "NL/NH"
    assert ctx.device_class == "desktop"
    assert ctx.timestamp == at


def test_extract_context_defaults_to_unknown_geo() -> None:
    ctx = extract_context("alice", "8.8.8.8", None)
    assert ctx.location == "unknown/unknown"
    assert ctx.timestamp.tzinfo is not None


class _FakeReader:
    def __init__(self, path: str) -> None:
        self.path = path
        self.closed = False

    def city(self, ip: str):
        if ip == "9.9.9.9":
            raise geoip2.errors.AddressNotFoundError("not in database")
        return SimpleNamespace(
            country=SimpleNamespace(iso_code="US"),
            subdivisions=SimpleNamespace(most_specific=SimpleNamespace(iso_code="CA")),
            city=SimpleNamespace(name="San Jose"),
        )

    def close(self) -> None:
        self.closed = True


def test_geoip2_resolver_maps_city_response(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(context_mod.geoip2.database, "Reader", _FakeReader)
    resolver = GeoIP2Resolver("GeoLite2-City.mmdb")

    assert resolver.resolve("8.8.8.8") == GeoLocation(country="US", region="CA", city="San Jose")
    assert resolver.resolve("9.9.9.9") == GeoLocation()
    assert resolver.resolve("10.1.2.3") == GeoLocation()
    resolver.close()
