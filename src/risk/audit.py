"""Activity log entries and the fire-and-forget audit trail."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from common.best_effort import best_effort

if TYPE_CHECKING:
    from storage.base import ActivityLogStore


ACCOUNT_MONITORING_ENABLED = "ACCOUNT_MONITORING_ENABLED"
ACCOUNT_MONITORING_DISABLED = "ACCOUNT_MONITORING_DISABLED"
ADMIN_REVIEW_SUSPICIOUS_ACTIVITY = "ADMIN_REVIEW_SUSPICIOUS_ACTIVITY"


@dataclass(frozen=True)
class ActivityLogEntry:
    user_id: str
    activity: str
    created_at: datetime
    entry_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    ip: str | None = None
    user_agent: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditTrail:
    """Appends activity entries; a failing sink never fails the caller."""

    def __init__(self, store: "ActivityLogStore") -> None:
        self._store = store

    @property
    def store(self) -> "ActivityLogStore":
        return self._store

    def record(
        self,
        user_id: str,
        activity: str,
        *,
        at: datetime,
        ip: str | None = None,
        user_agent: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            user_id=user_id,
            activity=activity,
            created_at=at,
            ip=ip,
            user_agent=user_agent,
            metadata=dict(metadata or {}),
        )
        best_effort("audit_append", self._store.append, entry)
        return entry


__all__ = [
    "ACCOUNT_MONITORING_DISABLED",
    "ACCOUNT_MONITORING_ENABLED",
    "ADMIN_REVIEW_SUSPICIOUS_ACTIVITY",
    "ActivityLogEntry",
    "AuditTrail",
]
