"""In-process stores.

Whole-object read-modify-write is only safe here because every write for a given
user runs under that user's lock.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import replace
from datetime import datetime

from risk.audit import ActivityLogEntry
from risk.baseline import BaselineObservation, UserBaseline, apply_observation
from risk.monitoring import MonitoringState
from risk.suspicious import ReviewStatus, SuspiciousActivityFilters, SuspiciousActivityRecord


class _KeyedLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def for_key(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


class InMemoryBaselineStore:
    def __init__(self) -> None:
        self._items: dict[str, UserBaseline] = {}
        self._locks = _KeyedLocks()

    def get(self, user_id: str) -> UserBaseline | None:
        return self._items.get(user_id)

    def apply(self, user_id: str, obs: BaselineObservation) -> UserBaseline:
        with self._locks.for_key(user_id):
            updated = apply_observation(self._items.get(user_id), user_id, obs)
            self._items[user_id] = updated
            return updated

    def delete(self, user_id: str) -> bool:
        with self._locks.for_key(user_id):
            return self._items.pop(user_id, None) is not None


class InMemoryMonitoringStore:
    def __init__(self) -> None:
        self._items: dict[str, MonitoringState] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> MonitoringState | None:
        return self._items.get(user_id)

    def upsert(self, state: MonitoringState) -> None:
        with self._lock:
            self._items[state.user_id] = state

    def close(
        self, user_id: str, *, disabled_at: datetime, disabled_by: str
    ) -> MonitoringState | None:
        with self._lock:
            current = self._items.get(user_id)
            if current is None or not current.is_active(disabled_at):
                return None
            closed = replace(current, disabled_at=disabled_at, disabled_by=disabled_by)
            self._items[user_id] = closed
            return closed

    def purge(self, *, expired_before: datetime) -> int:
        with self._lock:
            stale = [uid for uid, s in self._items.items() if s.expires_at < expired_before]
            for uid in stale:
                del self._items[uid]
            return len(stale)


class InMemorySuspiciousActivityStore:
    def __init__(self) -> None:
        self._items: dict[str, SuspiciousActivityRecord] = {}
        self._lock = threading.Lock()

    def add(self, record: SuspiciousActivityRecord) -> None:
        with self._lock:
            self._items[record.id] = record

    def get(self, record_id: str) -> SuspiciousActivityRecord | None:
        return self._items.get(record_id)

    def review(
        self,
        record_id: str,
        *,
        status: ReviewStatus,
        reviewed_at: datetime,
        reviewed_by: str,
        notes: str | None,
    ) -> SuspiciousActivityRecord | None:
        with self._lock:
            current = self._items.get(record_id)
            if current is None:
                return None
            updated = replace(
                current,
                status=status,
                reviewed_at=reviewed_at,
                reviewed_by=reviewed_by,
                review_notes=notes,
            )
            self._items[record_id] = updated
            return updated

    def count_since(self, user_id: str, since: datetime) -> int:
        with self._lock:
            return sum(
                1 for r in self._items.values() if r.user_id == user_id and r.created_at > since
            )

    def search(
        self, filters: SuspiciousActivityFilters, *, offset: int, limit: int
    ) -> tuple[list[SuspiciousActivityRecord], int]:
        with self._lock:
            matching = [r for r in self._items.values() if filters.matches(r)]
        matching.sort(key=lambda r: r.created_at, reverse=True)
        return matching[offset : offset + limit], len(matching)


class InMemoryActivityLogStore:
    def __init__(self) -> None:
        self._entries: dict[str, list[ActivityLogEntry]] = defaultdict(list)
        self._lock = threading.Lock()

    def append(self, entry: ActivityLogEntry) -> None:
        with self._lock:
            self._entries[entry.user_id].append(entry)

    def count_since(self, user_id: str, activity: str, since: datetime) -> int:
        with self._lock:
            return sum(
                1
                for e in self._entries.get(user_id, [])
                if e.activity == activity and e.created_at > since
            )

    def recent(self, user_id: str, limit: int = 50) -> list[ActivityLogEntry]:
        with self._lock:
            entries = list(self._entries.get(user_id, []))
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries[:limit]


__all__ = [
    "InMemoryActivityLogStore",
    "InMemoryBaselineStore",
    "InMemoryMonitoringStore",
    "InMemorySuspiciousActivityStore",
]
