from __future__ import annotations

from datetime import datetime
from typing import Protocol

from common.logging_utils import get_logger


logger = get_logger(__name__)


class Notifier(Protocol):
    def send_monitoring_notice(
        self, user_id: str, level: str, reason: str, expires_at: datetime
    ) -> None: ...


class LoggingNotifier:
    """Default sink: email delivery belongs to the host application."""

    def send_monitoring_notice(
        self, user_id: str, level: str, reason: str, expires_at: datetime
    ) -> None:
        logger.info(
            "monitoring notice user_id=%s level=%s reason=%s expires_at=%s",
            user_id,
            level,
            reason,
            expires_at.date().isoformat(),
        )
