from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable

import pytest

from common.metrics import reset_metrics
from common.models import ActivityContext, GeoLocation, UserAgentInfo
from risk.engine import AccountTakeoverEngine, in_memory_stores


# 2026-10-13 is a Tuesday.
TUESDAY_2PM = datetime(2026, 10, 13, 14, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str, datetime]] = []

    def send_monitoring_notice(
        self, user_id: str, level: str, reason: str, expires_at: datetime
    ) -> None:
        self.sent.append((user_id, level, reason, expires_at))


MakeCtx = Callable[..., ActivityContext]


@pytest.fixture(autouse=True)
def _clean_metrics() -> None:
    reset_metrics()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(TUESDAY_2PM)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_ctx() -> MakeCtx:
    def _make(
        user_id: str = "alice",
        ip: str = "1.2.3.4",
        *,
        browser: str = "Chrome 120.0",
        device_class: str = "desktop",
        country: str = "US",
        region: str = "CA",
        at: datetime = TUESDAY_2PM,
    ) -> ActivityContext:
        return ActivityContext(
            user_id=user_id,
            ip=ip,
            user_agent=UserAgentInfo(browser=browser, os="Windows 10", device_class=device_class),
            geo=GeoLocation(country=country, region=region, city="somewhere"),
            timestamp=at,
        )

    return _make


@pytest.fixture
def engine(clock: FixedClock, notifier: RecordingNotifier) -> AccountTakeoverEngine:
    return AccountTakeoverEngine(in_memory_stores(), notifier=notifier, clock=clock)
