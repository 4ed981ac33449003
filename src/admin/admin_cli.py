from __future__ import annotations

import argparse
import json
from typing import Any

from common.logging_utils import get_logger
from risk.config import AppConfig, load_config
from risk.engine import AccountTakeoverEngine, build_engine
from risk.errors import NotFoundError, ValidationError


logger = get_logger(__name__)

EXIT_NOT_FOUND = 1
EXIT_INVALID = 2


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Takeover guard admin operations")
    parser.add_argument("--config", default=None, help="Path to YAML config")
    sub = parser.add_subparsers(dest="command", required=True)

    ls = sub.add_parser("list", help="List suspicious activities (newest first)")
    ls.add_argument("--status", choices=["PENDING", "APPROVED", "REJECTED", "FLAGGED"])
    ls.add_argument("--user-id")
    ls.add_argument("--risk-level", choices=["LOW", "MEDIUM", "HIGH"])
    ls.add_argument("--page", type=int, default=1)
    ls.add_argument("--page-size", type=int, default=20)

    rv = sub.add_parser("review", help="Approve, reject or flag a suspicious activity")
    rv.add_argument("record_id")
    rv.add_argument("action", choices=["APPROVE", "REJECT", "FLAG"])
    rv.add_argument("--notes", default=None)
    rv.add_argument("--admin-id", required=True)

    en = sub.add_parser("monitor-enable", help="Place a user under monitoring")
    en.add_argument("user_id")
    en.add_argument("--level", choices=["BASIC", "ENHANCED"], default="BASIC")
    en.add_argument("--reason", required=True)
    en.add_argument("--days", type=int, default=None)
    en.add_argument("--actor", default=None)

    dis = sub.add_parser("monitor-disable", help="End a user's monitoring")
    dis.add_argument("user_id")
    dis.add_argument("--actor", default=None)

    cl = sub.add_parser("cleanup-monitoring", help="Purge long-expired monitoring records")
    cl.add_argument("--retention-days", type=int, default=None)

    sub.add_parser("create-tables", help="Create missing DynamoDB tables")
    return parser


def run(args: argparse.Namespace, engine: AccountTakeoverEngine) -> Any:
    if args.command == "list":
        records, total = engine.list_suspicious_activities(
            {"status": args.status, "user_id": args.user_id, "risk_level": args.risk_level},
            page=args.page,
            page_size=args.page_size,
        )
        return {
            "activities": [r.to_dict() for r in records],
            "pagination": {
                "page": args.page,
                "page_size": args.page_size,
                "total_items": total,
                "total_pages": -(-total // args.page_size),
            },
        }
    if args.command == "review":
        record = engine.review_suspicious_activity(
            args.record_id, args.action, args.notes, args.admin_id
        )
        return record.to_dict()
    if args.command == "monitor-enable":
        state = engine.enable_monitoring(
            args.user_id, args.level, args.reason, args.days, args.actor
        )
        return state.to_dict()
    if args.command == "monitor-disable":
        return engine.disable_monitoring(args.user_id, args.actor).to_dict()
    if args.command == "cleanup-monitoring":
        return {"purged": engine.cleanup_expired_monitoring(args.retention_days)}
    raise ValidationError(f"unknown command: {args.command}")


def main(argv: list[str] | None = None) -> None:
    args = _build_parser().parse_args(argv)
    cfg: AppConfig = load_config(args.config)

    if args.command == "create-tables":
        if cfg.storage.backend != "dynamodb":
            raise SystemExit("create-tables requires storage.backend = dynamodb")
        from storage.dynamodb import TableNames, create_tables, dynamodb_resource

        created = create_tables(
            dynamodb_resource(cfg.storage), TableNames.from_prefix(cfg.storage.table_prefix)
        )
        _print_json({"created": created})
        return

    engine = build_engine(cfg)
    try:
        result = run(args, engine)
    except NotFoundError as exc:
        print(f"NOT FOUND: {exc}")
        raise SystemExit(EXIT_NOT_FOUND)
    except ValidationError as exc:
        print(f"INVALID: {exc}")
        raise SystemExit(EXIT_INVALID)

    _print_json(result)


if __name__ == "__main__":
    main()
