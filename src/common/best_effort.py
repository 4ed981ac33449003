"""Best-effort side channels.

Audit writes, notifications and baseline persistence must never turn into a
caller-visible error. Calls routed through `best_effort` are retried when asked,
and a final failure is logged with its traceback and counted as a
`<label>.failed` metric instead of being raised.
"""

from __future__ import annotations

import time
from typing import Any, Callable, TypeVar

from common.logging_utils import get_logger
from common.metrics import Metric, emit_metric


logger = get_logger(__name__)

T = TypeVar("T")


def best_effort(
    label: str,
    fn: Callable[..., T],
    *args: Any,
    attempts: int = 1,
    base_delay: float = 0.05,
    **kwargs: Any,
) -> T | None:
    """Call *fn* and return its result, or None once every attempt has failed."""

    attempts = max(1, int(attempts))
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except Exception:  # noqa: BLE001
            if attempt >= attempts:
                logger.warning(
                    "best-effort call failed label=%s attempts=%s", label, attempts, exc_info=True
                )
                emit_metric(Metric(f"{label}.failed", 1))
                return None
            # Exponential backoff with a small cap.
            time.sleep(min(base_delay * (2 ** (attempt - 1)), 1.0))
    return None
