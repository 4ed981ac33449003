from __future__ import annotations


class RiskEngineError(Exception):
    """Base class for errors raised by the takeover guard."""


class NotFoundError(RiskEngineError):
    """Target monitoring state or suspicious-activity record does not exist."""


class ValidationError(RiskEngineError, ValueError):
    """Malformed input: unknown review action, bad monitoring level, bad paging."""


class AssessmentError(RiskEngineError):
    """Infrastructure failure while scoring. Never reaches the caller of `assess`."""


class PersistenceError(RiskEngineError):
    """A baseline merge or suspicious-record write could not be stored."""


__all__ = [
    "AssessmentError",
    "NotFoundError",
    "PersistenceError",
    "RiskEngineError",
    "ValidationError",
]
