from __future__ import annotations

import argparse
import json
import time
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from common.io_utils import iter_lines
from common.logging_utils import get_logger
from common.metrics import Metric, emit_metric
from common.models import ActivityContext, GeoLocation, UserAgentInfo
from risk.config import load_config
from risk.context import parse_user_agent_info
from risk.engine import AccountTakeoverEngine, build_engine
from risk.risk_rules import ActivityType, activity_name


logger = get_logger(__name__)


class ActivityEvent(BaseModel):
    """One JSONL line of recorded account activity."""

    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1)
    ip: str = Field(..., min_length=1)
    timestamp: datetime
    activity_type: str = ActivityType.LOGIN.value
    user_agent: str | None = None
    browser: str | None = None
    os: str | None = None
    device_class: str | None = None
    country: str | None = None
    region: str | None = None
    city: str | None = None

    def to_context(self) -> ActivityContext:
        if self.user_agent:
            ua = parse_user_agent_info(self.user_agent)
        else:
            ua = UserAgentInfo(
                browser=self.browser or "unknown",
                os=self.os or "unknown",
                device_class=self.device_class or "desktop",
            )
        geo = GeoLocation(
            country=self.country or "unknown",
            region=self.region or "unknown",
            city=self.city or "unknown",
        )
        return ActivityContext(
            user_id=self.user_id, ip=self.ip, user_agent=ua, geo=geo, timestamp=self.timestamp
        )


def iter_events(path: str | Path) -> Iterable[tuple[int, ActivityEvent | None]]:
    """Yield (line_no, event); event is None for lines that fail validation."""

    for line_no, line in iter_lines(path):
        try:
            yield line_no, ActivityEvent.model_validate(json.loads(line))
        except (json.JSONDecodeError, PydanticValidationError) as exc:
            logger.warning("skipping invalid event line=%s error=%s", line_no, exc)
            yield line_no, None


def replay_activity(
    *,
    input_path: str | Path,
    engine: AccountTakeoverEngine,
    max_events: int | None = None,
) -> dict[str, Any]:
    """Feed recorded activity through the engine in file order."""

    levels: Counter[str] = Counter()
    processed = 0
    failed_logins = 0
    invalid = 0
    verification_required = 0
    start = time.time()

    for line_no, event in iter_events(input_path):
        if max_events is not None and processed + invalid >= max_events:
            break
        if event is None:
            invalid += 1
            continue

        try:
            ctx = event.to_context()
        except PydanticValidationError as exc:
            logger.warning("skipping invalid event line=%s error=%s", line_no, exc)
            invalid += 1
            continue
        activity = activity_name(event.activity_type)
        if activity == ActivityType.FAILED_LOGIN.value:
            engine.record_failed_login(ctx.user_id, ctx)
            failed_logins += 1
        else:
            assessment, requirement = engine.protect(ctx, activity)
            levels[assessment.risk_level.name] += 1
            if not requirement.allow:
                verification_required += 1
        processed += 1

    elapsed = max(time.time() - start, 1e-6)
    emit_metric(Metric("replay.processed", processed))
    return {
        "input": str(input_path),
        "processed": processed,
        "invalid": invalid,
        "failed_logins": failed_logins,
        "levels": {name: levels.get(name, 0) for name in ("LOW", "MEDIUM", "HIGH")},
        "verification_required": verification_required,
        "elapsed_sec": elapsed,
    }


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(description="Replay recorded account activity through the risk engine")
    ap.add_argument(
        "--config",
        default=None,
        help="Path to YAML config (environment defaults when omitted)",
    )
    ap.add_argument(
        "--input",
        default=str(Path("data") / "sample" / "activity_sample.jsonl"),
        help="JSONL file of activity events. Defaults to the sample file.",
    )
    ap.add_argument("--max-events", type=int, default=None)
    ap.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing DynamoDB tables before replaying",
    )
    args = ap.parse_args(argv)

    cfg = load_config(args.config)
    engine = build_engine(cfg, create_missing_tables=args.create_tables)
    metrics = replay_activity(input_path=args.input, engine=engine, max_events=args.max_events)
    logger.info("metrics %s", json.dumps(metrics, separators=(",", ":"), sort_keys=True))


if __name__ == "__main__":
    main()
