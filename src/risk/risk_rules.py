"""Deterministic account-takeover risk rules.

Every rule compares one aspect of an `ActivityContext` with the user's baseline or
with an auxiliary signal and reports a single factor tag. The level is derived from
the collected tags afterwards, so a reviewer can always see which rule fired.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Iterable

from common.models import ActivityContext
from risk.baseline import UserBaseline
from risk.config import RiskConfig


class RiskLevel(IntEnum):
    """Ordered severity. Compare and combine numerically, never by name."""

    LOW = 0
    MEDIUM = 1
    HIGH = 2

    @classmethod
    def parse(cls, value: "str | int | RiskLevel") -> "RiskLevel":
        if isinstance(value, RiskLevel):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[str(value).strip().upper()]
        except KeyError as exc:
            raise ValueError(f"unknown risk level: {value!r}") from exc


class RiskFactor(str, Enum):
    NEW_IP = "NEW_IP"
    NEW_DEVICE = "NEW_DEVICE"
    NEW_BROWSER = "NEW_BROWSER"
    NEW_LOCATION = "NEW_LOCATION"
    UNUSUAL_DAY = "UNUSUAL_DAY"
    UNUSUAL_TIME = "UNUSUAL_TIME"
    RECENT_SUSPICIOUS_ACTIVITY = "RECENT_SUSPICIOUS_ACTIVITY"
    ACCOUNT_UNDER_MONITORING = "ACCOUNT_UNDER_MONITORING"
    MULTIPLE_FAILED_LOGINS = "MULTIPLE_FAILED_LOGINS"
    NO_USER_BASELINE = "NO_USER_BASELINE"
    ASSESSMENT_ERROR = "ASSESSMENT_ERROR"


class MonitoringLevel(str, Enum):
    BASIC = "BASIC"
    ENHANCED = "ENHANCED"


class ActivityType(str, Enum):
    LOGIN = "LOGIN"
    FAILED_LOGIN = "FAILED_LOGIN"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    EMAIL_CHANGE = "EMAIL_CHANGE"
    SECURITY_SETTINGS_CHANGE = "SECURITY_SETTINGS_CHANGE"
    PAYMENT_METHOD_CHANGE = "PAYMENT_METHOD_CHANGE"


# Factors that raise the base level to MEDIUM.
NOVELTY_FACTORS = frozenset({RiskFactor.NEW_IP, RiskFactor.NEW_DEVICE, RiskFactor.NEW_LOCATION})

# Reported for the reviewer only; they never move the level.
INFORMATIONAL_FACTORS = frozenset(
    {RiskFactor.NEW_BROWSER, RiskFactor.UNUSUAL_DAY, RiskFactor.UNUSUAL_TIME}
)

# Any of these forces HIGH.
FORCING_FACTORS = frozenset(
    {
        RiskFactor.RECENT_SUSPICIOUS_ACTIVITY,
        RiskFactor.MULTIPLE_FAILED_LOGINS,
        RiskFactor.NO_USER_BASELINE,
    }
)


def activity_name(activity_type: "str | ActivityType") -> str:
    if isinstance(activity_type, ActivityType):
        return activity_type.value
    return str(activity_type).strip().upper()


@dataclass(frozen=True)
class RiskSignals:
    """Auxiliary inputs read from storage before the rules run."""

    baseline: UserBaseline | None
    recent_suspicious_count: int = 0
    monitoring_level: MonitoringLevel | None = None
    failed_login_count: int = 0

    @property
    def known_baseline(self) -> UserBaseline:
        if self.baseline is None:
            raise ValueError("baseline is required to evaluate risk rules")
        return self.baseline


@dataclass(frozen=True)
class RuleResult:
    factor: RiskFactor
    triggered: bool


Rule = Callable[[ActivityContext, RiskSignals, RiskConfig], RuleResult]


def rule_new_ip(ctx: ActivityContext, signals: RiskSignals, cfg: RiskConfig) -> RuleResult:
    return RuleResult(RiskFactor.NEW_IP, ctx.ip not in signals.known_baseline.known_ips)


def rule_new_device(ctx: ActivityContext, signals: RiskSignals, cfg: RiskConfig) -> RuleResult:
    return RuleResult(
        RiskFactor.NEW_DEVICE, ctx.device_class not in signals.known_baseline.known_device_classes
    )


def rule_new_browser(ctx: ActivityContext, signals: RiskSignals, cfg: RiskConfig) -> RuleResult:
    return RuleResult(
        RiskFactor.NEW_BROWSER, ctx.browser not in signals.known_baseline.known_browsers
    )


def rule_new_location(ctx: ActivityContext, signals: RiskSignals, cfg: RiskConfig) -> RuleResult:
    return RuleResult(
        RiskFactor.NEW_LOCATION, ctx.location not in signals.known_baseline.known_locations
    )


def rule_unusual_day(ctx: ActivityContext, signals: RiskSignals, cfg: RiskConfig) -> RuleResult:
    """Fewer than `habitual_min_count` earlier visits on this weekday."""

    seen = signals.known_baseline.day_histogram.get(ctx.weekday, 0)
    return RuleResult(RiskFactor.UNUSUAL_DAY, seen < cfg.habitual_min_count)


def rule_unusual_time(ctx: ActivityContext, signals: RiskSignals, cfg: RiskConfig) -> RuleResult:
    seen = signals.known_baseline.hour_histogram.get(ctx.hour, 0)
    return RuleResult(RiskFactor.UNUSUAL_TIME, seen < cfg.habitual_min_count)


def rule_recent_suspicious(
    ctx: ActivityContext, signals: RiskSignals, cfg: RiskConfig
) -> RuleResult:
    return RuleResult(
        RiskFactor.RECENT_SUSPICIOUS_ACTIVITY, int(signals.recent_suspicious_count) > 0
    )


def rule_under_monitoring(
    ctx: ActivityContext, signals: RiskSignals, cfg: RiskConfig
) -> RuleResult:
    return RuleResult(RiskFactor.ACCOUNT_UNDER_MONITORING, signals.monitoring_level is not None)


def rule_failed_logins(ctx: ActivityContext, signals: RiskSignals, cfg: RiskConfig) -> RuleResult:
    """Failed login burst: N+ failures inside the trailing window."""

    return RuleResult(
        RiskFactor.MULTIPLE_FAILED_LOGINS,
        int(signals.failed_login_count) >= cfg.failed_login_threshold,
    )


# Evaluation order is part of the contract: it fixes the order of the factor list.
RULES: tuple[Rule, ...] = (
    rule_new_ip,
    rule_new_device,
    rule_new_browser,
    rule_new_location,
    rule_unusual_day,
    rule_unusual_time,
    rule_recent_suspicious,
    rule_under_monitoring,
    rule_failed_logins,
)


def derive_risk_level(
    factors: Iterable[RiskFactor],
    *,
    monitoring_level: MonitoringLevel | None = None,
    sensitive: bool = False,
) -> RiskLevel:
    """Collapse factor tags into a level.

    The two overrides that are not visible in the tags themselves are the
    monitoring level and whether the activity type is sensitive.
    """

    present = set(factors)

    level = RiskLevel.MEDIUM if present & NOVELTY_FACTORS else RiskLevel.LOW

    if present & FORCING_FACTORS:
        level = RiskLevel.HIGH

    if RiskFactor.ACCOUNT_UNDER_MONITORING in present:
        if monitoring_level == MonitoringLevel.ENHANCED:
            level = RiskLevel.HIGH
        else:
            level = max(level, RiskLevel.MEDIUM)

    if sensitive:
        level = max(level, RiskLevel.MEDIUM)
        if present - INFORMATIONAL_FACTORS:
            level = RiskLevel.HIGH

    return level


def requires_verification(level: RiskLevel, factors: Iterable[RiskFactor]) -> bool:
    count = len(set(factors))
    return level == RiskLevel.HIGH or (level == RiskLevel.MEDIUM and count >= 2)


@dataclass(frozen=True)
class RiskAssessment:
    risk_level: RiskLevel
    risk_factors: tuple[RiskFactor, ...] = field(default_factory=tuple)
    requires_verification: bool = False

    @classmethod
    def from_factors(
        cls,
        factors: Iterable[RiskFactor],
        *,
        monitoring_level: MonitoringLevel | None = None,
        sensitive: bool = False,
    ) -> "RiskAssessment":
        ordered = tuple(dict.fromkeys(factors))
        level = derive_risk_level(ordered, monitoring_level=monitoring_level, sensitive=sensitive)
        return cls(
            risk_level=level,
            risk_factors=ordered,
            requires_verification=requires_verification(level, ordered),
        )

    @classmethod
    def assessment_error(cls, *, fail_closed: bool = False) -> "RiskAssessment":
        level = RiskLevel.HIGH if fail_closed else RiskLevel.LOW
        return cls(
            risk_level=level,
            risk_factors=(RiskFactor.ASSESSMENT_ERROR,),
            requires_verification=fail_closed,
        )

    @property
    def factor_names(self) -> list[str]:
        return [f.value for f in self.risk_factors]

    def to_dict(self) -> dict[str, Any]:
        return {
            "risk_level": self.risk_level.name,
            "risk_factors": self.factor_names,
            "requires_verification": bool(self.requires_verification),
        }


def evaluate_factors(
    ctx: ActivityContext,
    signals: RiskSignals,
    cfg: RiskConfig,
    *,
    rules: Iterable[Rule] = RULES,
) -> list[RiskFactor]:
    """Run every rule in order and return the factors that fired."""

    fired: list[RiskFactor] = []
    for rule_fn in rules:
        result = rule_fn(ctx, signals, cfg)
        if result.triggered:
            fired.append(result.factor)
    return fired


def compute_risk(
    ctx: ActivityContext,
    signals: RiskSignals,
    cfg: RiskConfig,
    *,
    activity_type: "str | ActivityType" = ActivityType.LOGIN,
) -> RiskAssessment:
    """Full rule cascade for one activity, including the missing-baseline cases."""

    sensitive = activity_name(activity_type) in cfg.sensitive_activity_types

    if signals.baseline is None:
        if activity_name(activity_type) == ActivityType.LOGIN.value:
            # First login ever: nothing to compare against yet.
            return RiskAssessment.from_factors([])
        return RiskAssessment.from_factors([RiskFactor.NO_USER_BASELINE], sensitive=sensitive)

    factors = evaluate_factors(ctx, signals, cfg)
    return RiskAssessment.from_factors(
        factors, monitoring_level=signals.monitoring_level, sensitive=sensitive
    )


__all__ = [
    "ActivityType",
    "FORCING_FACTORS",
    "INFORMATIONAL_FACTORS",
    "MonitoringLevel",
    "NOVELTY_FACTORS",
    "RULES",
    "RiskAssessment",
    "RiskFactor",
    "RiskLevel",
    "RiskSignals",
    "RuleResult",
    "activity_name",
    "compute_risk",
    "derive_risk_level",
    "evaluate_factors",
    "requires_verification",
]
