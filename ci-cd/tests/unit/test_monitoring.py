from __future__ import annotations

from datetime import timedelta

import pytest

from common.metrics import metric_total
from risk.audit import ACCOUNT_MONITORING_DISABLED, ACCOUNT_MONITORING_ENABLED
from risk.engine import AccountTakeoverEngine, in_memory_stores
from risk.errors import NotFoundError, ValidationError
from risk.risk_rules import MonitoringLevel


def test_enable_sets_expiry_and_notifies(engine, clock, notifier) -> None:
    state = engine.enable_monitoring("alice", "enhanced", " suspicious reset ", 10, "admin-1")

    assert state.level == MonitoringLevel.ENHANCED
    assert state.reason == "suspicious reset"
    assert state.enabled_at == clock.now
    assert state.expires_at == clock.now + timedelta(days=10)
    assert state.enabled_by == "admin-1"
    assert notifier.sent == [("alice", "ENHANCED", "suspicious reset", state.expires_at)]

    active = engine.get_active_monitoring("alice")
    assert active == state


def test_enable_defaults_to_thirty_days_and_system_actor(engine, clock) -> None:
    state = engine.enable_monitoring("alice", "BASIC", "routine")
    assert state.expires_at == clock.now + timedelta(days=30)
    assert state.enabled_by == "system"


def test_enable_again_replaces_in_place(engine, clock) -> None:
    engine.enable_monitoring("alice", "BASIC", "first", 5)
    clock.advance(days=1)
    second = engine.enable_monitoring("alice", "ENHANCED", "second", 2)

    active = engine.get_active_monitoring("alice")
    assert active == second
    assert active is not None and active.reason == "second"


@pytest.mark.parametrize("days", [0, -3])
def test_enable_rejects_non_positive_duration(engine, days: int) -> None:
    with pytest.raises(ValidationError):
        engine.enable_monitoring("alice", "BASIC", "x", days)


def test_enable_rejects_unknown_level(engine) -> None:
    with pytest.raises(ValidationError, match="monitoring level"):
        engine.enable_monitoring("alice", "PARANOID", "x")


def test_disable_closes_and_audits(engine, clock) -> None:
    engine.enable_monitoring("alice", "BASIC", "routine", 5, "admin-1")
    clock.advance(hours=1)
    closed = engine.disable_monitoring("alice", "admin-2")

    assert closed.disabled_at == clock.now
    assert closed.disabled_by == "admin-2"
    assert engine.get_active_monitoring("alice") is None

    activities = [e.activity for e in engine.stores.activity_log.recent("alice")]
    assert activities == [ACCOUNT_MONITORING_DISABLED, ACCOUNT_MONITORING_ENABLED]


def test_disable_without_active_monitoring_is_not_found(engine, clock) -> None:
    with pytest.raises(NotFoundError):
        engine.disable_monitoring("alice")

    engine.enable_monitoring("alice", "BASIC", "routine", 1)
    clock.advance(days=2)
    with pytest.raises(NotFoundError):
        engine.disable_monitoring("alice")


def test_expired_monitoring_is_ignored(engine, clock) -> None:
    engine.enable_monitoring("alice", "BASIC", "routine", 1)
    clock.advance(days=1)
    assert engine.get_active_monitoring("alice") is None


def test_cleanup_purges_only_long_expired_records(engine, clock) -> None:
    engine.enable_monitoring("old", "BASIC", "x", 1)
    clock.advance(days=50)
    engine.enable_monitoring("recent", "BASIC", "x", 1)
    clock.advance(days=50)

    purged = engine.cleanup_expired_monitoring()
    assert purged == 1
    assert engine.stores.monitoring.get("old") is None
    assert engine.stores.monitoring.get("recent") is not None

    with pytest.raises(ValidationError):
        engine.cleanup_expired_monitoring(-1)


def test_notifier_failure_does_not_fail_enable(clock) -> None:
    class BrokenNotifier:
        def send_monitoring_notice(self, user_id, level, reason, expires_at) -> None:
            raise ConnectionError("smtp down")

    engine = AccountTakeoverEngine(in_memory_stores(), notifier=BrokenNotifier(), clock=clock)
    state = engine.enable_monitoring("alice", "BASIC", "routine")

    assert engine.get_active_monitoring("alice") == state
    assert metric_total("monitoring_notice.failed") == 1
