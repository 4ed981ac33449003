"""Per-user behavioral baseline and the merge that keeps it current.

A baseline only ever grows: sets are unioned, histograms are incremented, and
`first_seen_at`/`last_seen_at` track the min/max observed timestamp. That makes a
merge safe to repeat and to apply out of order.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Mapping

from common.best_effort import best_effort
from common.logging_utils import get_logger
from common.models import ActivityContext

if TYPE_CHECKING:
    from storage.base import BaselineStore


logger = get_logger(__name__)


@dataclass(frozen=True)
class BaselineObservation:
    """The slice of an `ActivityContext` that a baseline remembers."""

    ip: str
    device_class: str
    browser: str
    location: str
    weekday: int
    hour: int
    timestamp: datetime

    @classmethod
    def from_context(cls, ctx: ActivityContext) -> "BaselineObservation":
        return cls(
            ip=ctx.ip,
            device_class=ctx.device_class,
            browser=ctx.browser,
            location=ctx.location,
            weekday=ctx.weekday,
            hour=ctx.hour,
            timestamp=ctx.timestamp,
        )


@dataclass(frozen=True)
class UserBaseline:
    user_id: str
    first_seen_at: datetime
    last_seen_at: datetime
    known_ips: frozenset[str] = field(default_factory=frozenset)
    known_device_classes: frozenset[str] = field(default_factory=frozenset)
    known_browsers: frozenset[str] = field(default_factory=frozenset)
    known_locations: frozenset[str] = field(default_factory=frozenset)
    day_histogram: Mapping[int, int] = field(default_factory=dict)
    hour_histogram: Mapping[int, int] = field(default_factory=dict)

    @property
    def observation_count(self) -> int:
        return int(sum(self.day_histogram.values()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "first_seen_at": self.first_seen_at.isoformat(),
            "last_seen_at": self.last_seen_at.isoformat(),
            "known_ips": sorted(self.known_ips),
            "known_device_classes": sorted(self.known_device_classes),
            "known_browsers": sorted(self.known_browsers),
            "known_locations": sorted(self.known_locations),
            "day_histogram": {str(k): int(v) for k, v in sorted(self.day_histogram.items())},
            "hour_histogram": {str(k): int(v) for k, v in sorted(self.hour_histogram.items())},
        }


def _bump(histogram: Mapping[int, int], key: int) -> dict[int, int]:
    out = dict(histogram)
    out[key] = int(out.get(key, 0)) + 1
    return out


def apply_observation(
    baseline: UserBaseline | None, user_id: str, obs: BaselineObservation
) -> UserBaseline:
    if baseline is None:
        return UserBaseline(
            user_id=user_id,
            first_seen_at=obs.timestamp,
            last_seen_at=obs.timestamp,
            known_ips=frozenset({obs.ip}),
            known_device_classes=frozenset({obs.device_class}),
            known_browsers=frozenset({obs.browser}),
            known_locations=frozenset({obs.location}),
            day_histogram={obs.weekday: 1},
            hour_histogram={obs.hour: 1},
        )

    return UserBaseline(
        user_id=baseline.user_id,
        first_seen_at=min(baseline.first_seen_at, obs.timestamp),
        last_seen_at=max(baseline.last_seen_at, obs.timestamp),
        known_ips=baseline.known_ips | {obs.ip},
        known_device_classes=baseline.known_device_classes | {obs.device_class},
        known_browsers=baseline.known_browsers | {obs.browser},
        known_locations=baseline.known_locations | {obs.location},
        day_histogram=_bump(baseline.day_histogram, obs.weekday),
        hour_histogram=_bump(baseline.hour_histogram, obs.hour),
    )


def merge_baseline(baseline: UserBaseline | None, ctx: ActivityContext) -> UserBaseline:
    """Fold *ctx* into *baseline* (or seed a new one) without touching storage."""

    return apply_observation(baseline, ctx.user_id, BaselineObservation.from_context(ctx))


class BaselineMerger:
    """Persists merges through a store's atomic `apply` primitive.

    Store failures are retried, then logged and dropped: the caller is the risk
    scorer and a lost baseline update must never block a login.
    """

    def __init__(self, store: "BaselineStore", *, attempts: int = 2) -> None:
        self._store = store
        self._attempts = attempts

    def merge(self, ctx: ActivityContext) -> UserBaseline | None:
        obs = BaselineObservation.from_context(ctx)
        updated = best_effort(
            "baseline_merge",
            self._store.apply,
            ctx.user_id,
            obs,
            attempts=self._attempts,
        )
        if updated is None:
            logger.error("baseline merge dropped user_id=%s", ctx.user_id)
        return updated


__all__ = [
    "BaselineMerger",
    "BaselineObservation",
    "UserBaseline",
    "apply_observation",
    "merge_baseline",
]
