"""Account-takeover protection engine.

The single entry point the authentication flow and the admin surface talk to:

    engine = build_engine(load_config("config/dev.yaml"))
    assessment = engine.assess(ctx.user_id, ctx, "LOGIN")
    requirement = engine.decide(assessment)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping

from common.logging_utils import get_logger
from common.models import ActivityContext
from risk.audit import ActivityLogEntry, AuditTrail
from risk.baseline import UserBaseline
from risk.config import AppConfig, RiskConfig
from risk.monitoring import MonitoringController, MonitoringState, utc_now
from risk.notifications import Notifier
from risk.risk_rules import ActivityType, MonitoringLevel, RiskAssessment
from risk.scorer import RiskScorer
from risk.suspicious import (
    ReviewAction,
    SuspiciousActivityFilters,
    SuspiciousActivityRecord,
    SuspiciousActivityWorkflow,
)
from risk.verification import VerificationRequirement, decide
from storage.base import ActivityLogStore, BaselineStore, MonitoringStore, SuspiciousActivityStore
from storage.memory import (
    InMemoryActivityLogStore,
    InMemoryBaselineStore,
    InMemoryMonitoringStore,
    InMemorySuspiciousActivityStore,
)


logger = get_logger(__name__)


@dataclass(frozen=True)
class Stores:
    baselines: BaselineStore
    monitoring: MonitoringStore
    suspicious_activities: SuspiciousActivityStore
    activity_log: ActivityLogStore


def in_memory_stores() -> Stores:
    return Stores(
        baselines=InMemoryBaselineStore(),
        monitoring=InMemoryMonitoringStore(),
        suspicious_activities=InMemorySuspiciousActivityStore(),
        activity_log=InMemoryActivityLogStore(),
    )


class AccountTakeoverEngine:
    def __init__(
        self,
        stores: Stores,
        *,
        cfg: RiskConfig | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.cfg = cfg or RiskConfig()
        self.stores = stores
        self._clock = clock

        self.audit = AuditTrail(stores.activity_log)
        self.monitoring = MonitoringController(
            stores.monitoring,
            self.audit,
            notifier=notifier,
            clock=clock,
            default_days=self.cfg.default_monitoring_days,
        )
        self.suspicious = SuspiciousActivityWorkflow(
            stores.suspicious_activities, self.audit, clock=clock
        )
        self.scorer = RiskScorer(
            baselines=stores.baselines,
            monitoring=self.monitoring,
            suspicious=self.suspicious,
            audit=self.audit,
            cfg=self.cfg,
        )

    # ── Authentication flow ──────────────────────────────────────────────────

    def assess(
        self,
        user_id: str,
        ctx: ActivityContext,
        activity_type: "str | ActivityType" = ActivityType.LOGIN,
    ) -> RiskAssessment:
        return self.scorer.assess(user_id, ctx, activity_type)

    def decide(self, assessment: RiskAssessment) -> VerificationRequirement:
        return decide(assessment)

    def protect(
        self,
        ctx: ActivityContext,
        activity_type: "str | ActivityType" = ActivityType.LOGIN,
    ) -> tuple[RiskAssessment, VerificationRequirement]:
        """`assess` followed by `decide` for the context's own user."""

        assessment = self.assess(ctx.user_id, ctx, activity_type)
        return assessment, self.decide(assessment)

    def record_failed_login(self, user_id: str, ctx: ActivityContext) -> ActivityLogEntry:
        return self.audit.record(
            user_id,
            ActivityType.FAILED_LOGIN.value,
            at=ctx.timestamp,
            ip=ctx.ip,
            user_agent=ctx.user_agent.raw,
            metadata={"geo": ctx.geo.model_dump(mode="json")},
        )

    # ── Baselines ────────────────────────────────────────────────────────────

    def get_baseline(self, user_id: str) -> UserBaseline | None:
        return self.stores.baselines.get(user_id)

    def delete_baseline(self, user_id: str) -> bool:
        deleted = self.stores.baselines.delete(user_id)
        logger.info("baseline deleted user_id=%s existed=%s", user_id, deleted)
        return deleted

    # ── Admin surface ────────────────────────────────────────────────────────

    def enable_monitoring(
        self,
        user_id: str,
        level: "str | MonitoringLevel",
        reason: str,
        duration_days: int | None = None,
        actor: str | None = None,
    ) -> MonitoringState:
        return self.monitoring.enable(user_id, level, reason, duration_days, actor)

    def disable_monitoring(self, user_id: str, actor: str | None = None) -> MonitoringState:
        return self.monitoring.disable(user_id, actor)

    def get_active_monitoring(self, user_id: str) -> MonitoringState | None:
        return self.monitoring.get_active(user_id)

    def cleanup_expired_monitoring(self, retention_days: int | None = None) -> int:
        days = self.cfg.monitoring_retention_days if retention_days is None else retention_days
        return self.monitoring.cleanup_expired(days)

    def list_suspicious_activities(
        self,
        filters: "SuspiciousActivityFilters | Mapping[str, Any] | None" = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[SuspiciousActivityRecord], int]:
        if filters is not None and not isinstance(filters, SuspiciousActivityFilters):
            filters = SuspiciousActivityFilters.build(
                status=filters.get("status"),
                user_id=filters.get("user_id"),
                risk_level=filters.get("risk_level"),
            )
        return self.suspicious.list_activities(filters, page, page_size)

    def review_suspicious_activity(
        self,
        record_id: str,
        action: "str | ReviewAction",
        notes: str | None,
        admin_id: str,
    ) -> SuspiciousActivityRecord:
        return self.suspicious.review(record_id, action, notes, admin_id)


def build_engine(
    cfg: AppConfig | None = None,
    *,
    notifier: Notifier | None = None,
    clock: Callable[[], datetime] = utc_now,
    create_missing_tables: bool = False,
) -> AccountTakeoverEngine:
    """Wire an engine to the storage backend named in *cfg*."""

    cfg = cfg or AppConfig()
    backend = cfg.storage.backend.strip().lower()

    if backend == "memory":
        stores = in_memory_stores()
    elif backend == "dynamodb":
        from storage.dynamodb import (
            TableNames,
            build_dynamodb_stores,
            create_tables,
            dynamodb_resource,
        )

        resource = dynamodb_resource(cfg.storage)
        names = TableNames.from_prefix(cfg.storage.table_prefix)
        if create_missing_tables:
            create_tables(resource, names)
        ddb = build_dynamodb_stores(resource, names)
        stores = Stores(
            baselines=ddb.baselines,
            monitoring=ddb.monitoring,
            suspicious_activities=ddb.suspicious_activities,
            activity_log=ddb.activity_log,
        )
    else:
        raise ValueError(f"Unknown storage backend: {cfg.storage.backend!r}")

    logger.info("engine ready backend=%s", backend)
    return AccountTakeoverEngine(stores, cfg=cfg.risk, notifier=notifier, clock=clock)


__all__ = ["AccountTakeoverEngine", "Stores", "build_engine", "in_memory_stores"]
