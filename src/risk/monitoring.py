"""Time-boxed heightened scrutiny for a single account.

There is at most one monitoring record per user. Enabling again replaces it in
place; disabling soft-closes it so the record stays around for audit. Expiry is
passive: readers ignore records past `expires_at`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable

from common.best_effort import best_effort
from common.logging_utils import get_logger
from risk.audit import ACCOUNT_MONITORING_DISABLED, ACCOUNT_MONITORING_ENABLED, AuditTrail
from risk.errors import NotFoundError, ValidationError
from risk.notifications import LoggingNotifier, Notifier
from risk.risk_rules import MonitoringLevel

if TYPE_CHECKING:
    from storage.base import MonitoringStore


logger = get_logger(__name__)

SYSTEM_ACTOR = "system"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MonitoringState:
    user_id: str
    level: MonitoringLevel
    reason: str
    enabled_at: datetime
    expires_at: datetime
    enabled_by: str = SYSTEM_ACTOR
    disabled_at: datetime | None = None
    disabled_by: str | None = None

    def is_active(self, at: datetime) -> bool:
        return self.disabled_at is None and self.expires_at > at

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "level": self.level.value,
            "reason": self.reason,
            "enabled_at": self.enabled_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "enabled_by": self.enabled_by,
            "disabled_at": self.disabled_at.isoformat() if self.disabled_at else None,
            "disabled_by": self.disabled_by,
        }


def parse_monitoring_level(value: "str | MonitoringLevel") -> MonitoringLevel:
    if isinstance(value, MonitoringLevel):
        return value
    try:
        return MonitoringLevel(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"unknown monitoring level: {value!r}") from exc


class MonitoringController:
    def __init__(
        self,
        store: "MonitoringStore",
        audit: AuditTrail,
        *,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
        default_days: int = 30,
    ) -> None:
        self._store = store
        self._audit = audit
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock
        self._default_days = default_days

    def enable(
        self,
        user_id: str,
        level: "str | MonitoringLevel",
        reason: str,
        duration_days: int | None = None,
        actor: str | None = None,
    ) -> MonitoringState:
        """Create or replace the user's monitoring record."""

        user_id = (user_id or "").strip()
        if not user_id:
            raise ValidationError("user_id must be non-empty")
        lvl = parse_monitoring_level(level)
        days = self._default_days if duration_days is None else duration_days
        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise ValidationError(f"duration_days must be a positive integer, got {days!r}")

        now = self._clock()
        state = MonitoringState(
            user_id=user_id,
            level=lvl,
            reason=(reason or "").strip(),
            enabled_at=now,
            expires_at=now + timedelta(days=days),
            enabled_by=actor or SYSTEM_ACTOR,
        )
        self._store.upsert(state)
        logger.info(
            "monitoring enabled user_id=%s level=%s days=%s by=%s",
            user_id,
            lvl.value,
            days,
            state.enabled_by,
        )

        self._audit.record(
            user_id,
            ACCOUNT_MONITORING_ENABLED,
            at=now,
            metadata={
                "level": lvl.value,
                "reason": state.reason,
                "duration_days": days,
                "expires_at": state.expires_at.isoformat(),
                "enabled_by": state.enabled_by,
            },
        )
        best_effort(
            "monitoring_notice",
            self._notifier.send_monitoring_notice,
            user_id,
            lvl.value,
            state.reason,
            state.expires_at,
        )
        return state

    def disable(self, user_id: str, actor: str | None = None) -> MonitoringState:
        now = self._clock()
        closed = self._store.close(user_id, disabled_at=now, disabled_by=actor or SYSTEM_ACTOR)
        if closed is None:
            raise NotFoundError(f"no active monitoring for user {user_id}")

        logger.info("monitoring disabled user_id=%s by=%s", user_id, closed.disabled_by)
        self._audit.record(
            user_id,
            ACCOUNT_MONITORING_DISABLED,
            at=now,
            metadata={
                "level": closed.level.value,
                "reason": closed.reason,
                "disabled_by": closed.disabled_by,
            },
        )
        return closed

    def get_active(self, user_id: str, at: datetime | None = None) -> MonitoringState | None:
        state = self._store.get(user_id)
        if state is None or not state.is_active(at or self._clock()):
            return None
        return state

    def cleanup_expired(self, retention_days: int = 90) -> int:
        """Drop records that expired more than *retention_days* ago."""

        if retention_days < 0:
            raise ValidationError("retention_days must not be negative")
        cutoff = self._clock() - timedelta(days=retention_days)
        purged = self._store.purge(expired_before=cutoff)
        logger.info("monitoring cleanup purged=%s cutoff=%s", purged, cutoff.isoformat())
        return purged


__all__ = [
    "MonitoringController",
    "MonitoringState",
    "SYSTEM_ACTOR",
    "parse_monitoring_level",
    "utc_now",
]
