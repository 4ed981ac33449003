"""Reviewable records of non-LOW activity and the admin review workflow."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable

from common.logging_utils import get_logger
from risk.audit import ADMIN_REVIEW_SUSPICIOUS_ACTIVITY, AuditTrail
from risk.errors import NotFoundError, ValidationError
from risk.monitoring import utc_now
from risk.risk_rules import RiskLevel

if TYPE_CHECKING:
    from storage.base import SuspiciousActivityStore


logger = get_logger(__name__)

MAX_PAGE_SIZE = 200


class ReviewStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    FLAGGED = "FLAGGED"


class ReviewAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    FLAG = "FLAG"


ACTION_TO_STATUS: dict[ReviewAction, ReviewStatus] = {
    ReviewAction.APPROVE: ReviewStatus.APPROVED,
    ReviewAction.REJECT: ReviewStatus.REJECTED,
    ReviewAction.FLAG: ReviewStatus.FLAGGED,
}


@dataclass(frozen=True)
class SuspiciousActivityRecord:
    user_id: str
    activity_type: str
    risk_level: RiskLevel
    created_at: datetime
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    ip: str | None = None
    user_agent: str | None = None
    location: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    status: ReviewStatus = ReviewStatus.PENDING
    reviewed_at: datetime | None = None
    reviewed_by: str | None = None
    review_notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "activity_type": self.activity_type,
            "risk_level": self.risk_level.name,
            "ip": self.ip,
            "user_agent": self.user_agent,
            "location": self.location,
            "details": self.details,
            "status": self.status.value,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "reviewed_by": self.reviewed_by,
            "review_notes": self.review_notes,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class SuspiciousActivityFilters:
    status: ReviewStatus | None = None
    user_id: str | None = None
    risk_level: RiskLevel | None = None

    @classmethod
    def build(
        cls,
        *,
        status: "str | ReviewStatus | None" = None,
        user_id: str | None = None,
        risk_level: "str | RiskLevel | None" = None,
    ) -> "SuspiciousActivityFilters":
        try:
            parsed_status = ReviewStatus(str(status).strip().upper()) if status else None
            parsed_level = RiskLevel.parse(risk_level) if risk_level else None
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        return cls(status=parsed_status, user_id=user_id or None, risk_level=parsed_level)

    def matches(self, record: SuspiciousActivityRecord) -> bool:
        if self.status is not None and record.status != self.status:
            return False
        if self.user_id is not None and record.user_id != self.user_id:
            return False
        if self.risk_level is not None and record.risk_level != self.risk_level:
            return False
        return True


def parse_review_action(value: "str | ReviewAction") -> ReviewAction:
    if isinstance(value, ReviewAction):
        return value
    try:
        return ReviewAction(str(value).strip().upper())
    except ValueError as exc:
        raise ValidationError(f"unknown review action: {value!r}") from exc


class SuspiciousActivityWorkflow:
    def __init__(
        self,
        store: "SuspiciousActivityStore",
        audit: AuditTrail,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock

    @property
    def store(self) -> "SuspiciousActivityStore":
        return self._store

    def record(self, record: SuspiciousActivityRecord) -> SuspiciousActivityRecord:
        self._store.add(record)
        logger.info(
            "suspicious activity recorded id=%s user_id=%s activity=%s level=%s",
            record.id,
            record.user_id,
            record.activity_type,
            record.risk_level.name,
        )
        return record

    def count_recent(self, user_id: str, since: datetime) -> int:
        return int(self._store.count_since(user_id, since))

    def list_activities(
        self,
        filters: SuspiciousActivityFilters | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[SuspiciousActivityRecord], int]:
        """Newest first; `total` counts every record matching *filters*."""

        if page < 1:
            raise ValidationError("page must be >= 1")
        if page_size < 1 or page_size > MAX_PAGE_SIZE:
            raise ValidationError(f"page_size must be between 1 and {MAX_PAGE_SIZE}")

        return self._store.search(
            filters or SuspiciousActivityFilters(),
            offset=(page - 1) * page_size,
            limit=page_size,
        )

    def review(
        self,
        record_id: str,
        action: "str | ReviewAction",
        notes: str | None,
        admin_id: str,
    ) -> SuspiciousActivityRecord:
        """Apply an admin decision. Re-reviewing is allowed; the last review wins."""

        act = parse_review_action(action)
        if not (admin_id or "").strip():
            raise ValidationError("admin_id must be non-empty")

        now = self._clock()
        updated = self._store.review(
            record_id,
            status=ACTION_TO_STATUS[act],
            reviewed_at=now,
            reviewed_by=admin_id,
            notes=notes,
        )
        if updated is None:
            raise NotFoundError(f"suspicious activity {record_id} not found")

        logger.info(
            "suspicious activity reviewed id=%s action=%s by=%s", record_id, act.value, admin_id
        )
        self._audit.record(
            updated.user_id,
            ADMIN_REVIEW_SUSPICIOUS_ACTIVITY,
            at=now,
            metadata={
                "activity_id": record_id,
                "action": act.value,
                "notes": notes,
                "admin_id": admin_id,
            },
        )
        return updated


__all__ = [
    "ACTION_TO_STATUS",
    "MAX_PAGE_SIZE",
    "ReviewAction",
    "ReviewStatus",
    "SuspiciousActivityFilters",
    "SuspiciousActivityRecord",
    "SuspiciousActivityWorkflow",
    "parse_review_action",
]
