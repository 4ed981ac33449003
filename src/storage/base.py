"""Storage contracts for the takeover guard.

Each store is keyed storage with upsert semantics. Implementations live in
`storage.memory` (single process) and `storage.dynamodb` (boto3).
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from risk.audit import ActivityLogEntry
from risk.baseline import BaselineObservation, UserBaseline
from risk.monitoring import MonitoringState
from risk.suspicious import ReviewStatus, SuspiciousActivityFilters, SuspiciousActivityRecord


class BaselineStore(Protocol):
    def get(self, user_id: str) -> UserBaseline | None: ...

    def apply(self, user_id: str, obs: BaselineObservation) -> UserBaseline:
        """Atomically fold *obs* into the user's baseline, creating it if needed."""
        ...

    def delete(self, user_id: str) -> bool: ...


class MonitoringStore(Protocol):
    def get(self, user_id: str) -> MonitoringState | None: ...

    def upsert(self, state: MonitoringState) -> None: ...

    def close(
        self, user_id: str, *, disabled_at: datetime, disabled_by: str
    ) -> MonitoringState | None:
        """Soft-close the record if it is active at *disabled_at*; None otherwise."""
        ...

    def purge(self, *, expired_before: datetime) -> int: ...


class SuspiciousActivityStore(Protocol):
    def add(self, record: SuspiciousActivityRecord) -> None: ...

    def get(self, record_id: str) -> SuspiciousActivityRecord | None: ...

    def review(
        self,
        record_id: str,
        *,
        status: ReviewStatus,
        reviewed_at: datetime,
        reviewed_by: str,
        notes: str | None,
    ) -> SuspiciousActivityRecord | None: ...

    def count_since(self, user_id: str, since: datetime) -> int: ...

    def search(
        self, filters: SuspiciousActivityFilters, *, offset: int, limit: int
    ) -> tuple[list[SuspiciousActivityRecord], int]: ...


class ActivityLogStore(Protocol):
    def append(self, entry: ActivityLogEntry) -> None: ...

    def count_since(self, user_id: str, activity: str, since: datetime) -> int: ...

    def recent(self, user_id: str, limit: int = 50) -> list[ActivityLogEntry]: ...


__all__ = [
    "ActivityLogStore",
    "BaselineStore",
    "MonitoringStore",
    "SuspiciousActivityStore",
]
