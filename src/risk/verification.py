from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from risk.risk_rules import RiskAssessment, RiskLevel


class VerificationMethod(str, Enum):
    EMAIL = "email"
    TOTP = "totp"


@dataclass(frozen=True)
class VerificationRequirement:
    allow: bool
    required_methods: tuple[VerificationMethod, ...] = field(default_factory=tuple)
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "allow": self.allow,
            "required_methods": [m.value for m in self.required_methods],
            "reason": self.reason,
        }


def decide(assessment: RiskAssessment) -> VerificationRequirement:
    """Map an assessment to allow / step-up verification. Holds no state."""

    if not assessment.requires_verification:
        return VerificationRequirement(allow=True)

    if assessment.risk_level == RiskLevel.HIGH:
        methods = (VerificationMethod.EMAIL, VerificationMethod.TOTP)
    else:
        methods = (VerificationMethod.EMAIL,)

    return VerificationRequirement(
        allow=False,
        required_methods=methods,
        reason=", ".join(assessment.factor_names),
    )


__all__ = ["VerificationMethod", "VerificationRequirement", "decide"]
