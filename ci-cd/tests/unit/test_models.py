from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from common.models import ActivityContext, GeoLocation, UserAgentInfo


def test_activity_context_normalizes_timestamp_to_utc() -> None:
    plus_two = timezone(timedelta(hours=2))
    ctx = ActivityContext(
        user_id="U1", ip="1.2.3.4", timestamp=datetime(2026, 10, 13, 16, 0, tzinfo=plus_two)
    )
    assert ctx.timestamp.tzinfo is not None
    assert ctx.timestamp.isoformat().endswith("+00:00")
    assert ctx.hour == 14


def test_activity_context_rejects_naive_datetime() -> None:
    with pytest.raises(ValueError, match="timezone-aware"):
        ActivityContext(user_id="U1", ip="1.2.3.4", timestamp=datetime(2026, 1, 1))


def test_activity_context_strips_and_rejects_blank_ids() -> None:
    ctx = ActivityContext(
        user_id=" U1 ", ip=" 1.2.3.4 ", timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc)
    )
    assert ctx.user_id == "U1"
    assert ctx.ip == "1.2.3.4"

    with pytest.raises(ValueError, match="non-empty"):
        ActivityContext(user_id=" ", ip="1.2.3.4", timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc))


def test_weekday_counts_from_sunday() -> None:
    sunday = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)
    tuesday = datetime(2026, 10, 13, 9, 0, tzinfo=timezone.utc)
    assert ActivityContext(user_id="U1", ip="x", timestamp=sunday).weekday == 0
    assert ActivityContext(user_id="U1", ip="x", timestamp=tuesday).weekday == 2


def test_location_key_and_unknown_defaults() -> None:
    ctx = ActivityContext(
        user_id="U1",
        ip="1.2.3.4",
        user_agent=UserAgentInfo(browser=" ", device_class="mobile"),
        geo=GeoLocation(country="US", region=""),
        timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )
    assert ctx.location == "US/unknown"
    assert ctx.browser == "unknown"
    assert ctx.device_class == "mobile"


def test_activity_context_forbids_extra_fields() -> None:
    with pytest.raises(ValueError):
        ActivityContext(
            user_id="U1",
            ip="1.2.3.4",
            timestamp=datetime(2026, 1, 1, tzinfo=timezone.utc),
            fingerprint="abc",
        )
