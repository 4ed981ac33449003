from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass

from common.logging_utils import get_logger


logger = get_logger(__name__)

_TOTALS: Counter[str] = Counter()
_TOTALS_LOCK = threading.Lock()


@dataclass(frozen=True)
class Metric:
    name: str
    value: float
    unit: str = "Count"


def emit_metric(metric: Metric) -> None:
    logger.info("metric %s=%s %s", metric.name, metric.value, metric.unit)
    with _TOTALS_LOCK:
        _TOTALS[metric.name] += metric.value


def metric_total(name: str) -> float:
    """Sum of every value emitted under *name* since the last reset."""

    with _TOTALS_LOCK:
        return float(_TOTALS.get(name, 0))


def reset_metrics() -> None:
    with _TOTALS_LOCK:
        _TOTALS.clear()
