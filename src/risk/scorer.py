"""Risk scorer: reads the signals, runs the rule cascade, records the outcome.

Scoring fails open. Any error while reading the baseline, monitoring state,
suspicious-activity history or failed-login count produces a LOW assessment tagged
ASSESSMENT_ERROR (or HIGH for sensitive activities when `fail_closed_sensitive` is
set), logged at error severity. Writes that follow a successful assessment are
best effort and never reach the caller.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from common.best_effort import best_effort
from common.logging_utils import get_logger
from common.metrics import Metric, emit_metric
from common.models import ActivityContext
from risk.audit import AuditTrail
from risk.baseline import BaselineMerger
from risk.config import RiskConfig
from risk.errors import AssessmentError, ValidationError
from risk.monitoring import MonitoringController
from risk.risk_rules import (
    ActivityType,
    RiskAssessment,
    RiskLevel,
    RiskSignals,
    activity_name,
    compute_risk,
)
from risk.suspicious import SuspiciousActivityRecord, SuspiciousActivityWorkflow

if TYPE_CHECKING:
    from storage.base import BaselineStore


logger = get_logger(__name__)


class RiskScorer:
    def __init__(
        self,
        *,
        baselines: "BaselineStore",
        monitoring: MonitoringController,
        suspicious: SuspiciousActivityWorkflow,
        audit: AuditTrail,
        cfg: RiskConfig,
    ) -> None:
        self._baselines = baselines
        self._monitoring = monitoring
        self._suspicious = suspicious
        self._audit = audit
        self._cfg = cfg
        self._merger = BaselineMerger(baselines, attempts=cfg.persistence_attempts)

    def assess(
        self,
        user_id: str,
        ctx: ActivityContext,
        activity_type: "str | ActivityType" = ActivityType.LOGIN,
    ) -> RiskAssessment:
        if ctx.user_id != user_id:
            raise ValidationError(f"context belongs to {ctx.user_id}, not {user_id}")
        activity = activity_name(activity_type)

        try:
            signals = self._load_signals(user_id, ctx)
            assessment = compute_risk(ctx, signals, self._cfg, activity_type=activity)
        except Exception as exc:  # noqa: BLE001
            return self._fail(user_id, activity, exc)

        logger.info(
            "risk assessed user_id=%s activity=%s level=%s factors=%s",
            user_id,
            activity,
            assessment.risk_level.name,
            ",".join(assessment.factor_names) or "-",
        )
        self._record_outcome(user_id, ctx, activity, assessment)
        return assessment

    def _load_signals(self, user_id: str, ctx: ActivityContext) -> RiskSignals:
        at = ctx.timestamp
        try:
            baseline = self._baselines.get(user_id)
            if baseline is None:
                return RiskSignals(baseline=None)

            recent_suspicious = self._suspicious.count_recent(
                user_id, at - timedelta(days=self._cfg.suspicious_lookback_days)
            )
            monitoring = self._monitoring.get_active(user_id, at)
            failed_logins = self._audit.store.count_since(
                user_id,
                ActivityType.FAILED_LOGIN.value,
                at - timedelta(hours=self._cfg.failed_login_window_hours),
            )
        except Exception as exc:  # noqa: BLE001
            raise AssessmentError(f"could not load risk signals for {user_id}") from exc

        return RiskSignals(
            baseline=baseline,
            recent_suspicious_count=int(recent_suspicious),
            monitoring_level=monitoring.level if monitoring is not None else None,
            failed_login_count=int(failed_logins),
        )

    def _fail(self, user_id: str, activity: str, exc: Exception) -> RiskAssessment:
        fail_closed = (
            self._cfg.fail_closed_sensitive and activity in self._cfg.sensitive_activity_types
        )
        logger.error(
            "risk assessment failed user_id=%s activity=%s fail_closed=%s",
            user_id,
            activity,
            fail_closed,
            exc_info=exc,
        )
        emit_metric(Metric("assessment.errors", 1))
        return RiskAssessment.assessment_error(fail_closed=fail_closed)

    def _record_outcome(
        self,
        user_id: str,
        ctx: ActivityContext,
        activity: str,
        assessment: RiskAssessment,
    ) -> None:
        device = ctx.user_agent.model_dump(mode="json", exclude={"raw"})
        geo = ctx.geo.model_dump(mode="json")

        self._audit.record(
            user_id,
            activity,
            at=ctx.timestamp,
            ip=ctx.ip,
            user_agent=ctx.user_agent.raw,
            metadata={**assessment.to_dict(), "device": device, "geo": geo},
        )

        self._merger.merge(ctx)

        if assessment.risk_level != RiskLevel.LOW:
            record = SuspiciousActivityRecord(
                user_id=user_id,
                activity_type=activity,
                risk_level=assessment.risk_level,
                created_at=ctx.timestamp,
                ip=ctx.ip,
                user_agent=ctx.user_agent.raw,
                location=ctx.location,
                details={"risk_factors": assessment.factor_names, "device": device, "geo": geo},
            )
            best_effort(
                "suspicious_record",
                self._suspicious.record,
                record,
                attempts=self._cfg.persistence_attempts,
            )


__all__ = ["RiskScorer"]
