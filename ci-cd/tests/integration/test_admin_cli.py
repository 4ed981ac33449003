from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterator

import boto3
import pytest
from moto import mock_aws

from admin.admin_cli import EXIT_INVALID, EXIT_NOT_FOUND, _build_parser, main, run
from risk.config import load_config
from risk.engine import build_engine
from risk.risk_rules import RiskLevel
from risk.suspicious import SuspiciousActivityRecord


REGION = "us-east-1"
PREFIX = "tg-cli"


@pytest.fixture
def dynamodb_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("TAKEOVERGUARD_STORAGE", "dynamodb")
    monkeypatch.setenv("TAKEOVERGUARD_TABLE_PREFIX", PREFIX)
    monkeypatch.setenv("AWS_REGION", REGION)
    monkeypatch.setenv("AWS_DEFAULT_REGION", REGION)
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    monkeypatch.delenv("TAKEOVERGUARD_DYNAMODB_ENDPOINT", raising=False)
    with mock_aws():
        yield


def test_create_tables_command(dynamodb_env: None) -> None:
    main(["create-tables"])
    tables = boto3.client("dynamodb", region_name=REGION).list_tables()["TableNames"]
    assert f"{PREFIX}-suspicious-activities" in tables
    assert f"{PREFIX}-activity-log" in tables


def test_create_tables_requires_dynamodb_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TAKEOVERGUARD_STORAGE", "memory")
    with pytest.raises(SystemExit, match="dynamodb"):
        main(["create-tables"])


def test_monitoring_commands_share_state_through_dynamodb(dynamodb_env: None) -> None:
    main(["create-tables"])
    main(["monitor-enable", "alice", "--level", "ENHANCED", "--reason", "case 42", "--days", "3"])
    main(["monitor-disable", "alice", "--actor", "admin-1"])

    with pytest.raises(SystemExit) as excinfo:
        main(["monitor-disable", "alice"])
    assert excinfo.value.code == EXIT_NOT_FOUND


def test_invalid_arguments_exit_with_invalid_code(dynamodb_env: None) -> None:
    main(["create-tables"])
    with pytest.raises(SystemExit) as excinfo:
        main(["monitor-enable", "alice", "--reason", "x", "--days", "0"])
    assert excinfo.value.code == EXIT_INVALID

    with pytest.raises(SystemExit) as excinfo:
        main(["list", "--page", "0"])
    assert excinfo.value.code == EXIT_INVALID


def test_list_and_review_round_trip(dynamodb_env: None) -> None:
    main(["create-tables"])
    engine = build_engine(load_config())
    t0 = datetime(2026, 10, 13, 14, 0, tzinfo=timezone.utc)
    ids = []
    for i in range(3):
        record = SuspiciousActivityRecord(
            user_id="alice",
            activity_type="LOGIN",
            risk_level=RiskLevel.HIGH if i == 2 else RiskLevel.MEDIUM,
            created_at=t0 + timedelta(minutes=i),
        )
        engine.suspicious.record(record)
        ids.append(record.id)

    listed = run(_build_parser().parse_args(["list", "--page-size", "2"]), engine)
    assert listed["pagination"] == {"page": 1, "page_size": 2, "total_items": 3, "total_pages": 2}
    assert [a["id"] for a in listed["activities"]] == [ids[2], ids[1]]

    reviewed = run(
        _build_parser().parse_args(
            ["review", ids[0], "REJECT", "--notes", "false positive", "--admin-id", "admin-1"]
        ),
        engine,
    )
    assert reviewed["status"] == "REJECTED"
    assert reviewed["reviewed_by"] == "admin-1"

    rejected = run(_build_parser().parse_args(["list", "--status", "REJECTED"]), engine)
    assert rejected["pagination"]["total_items"] == 1

    with pytest.raises(SystemExit) as excinfo:
        main(["review", "missing", "APPROVE", "--admin-id", "admin-1"])
    assert excinfo.value.code == EXIT_NOT_FOUND


def test_cleanup_command_reports_purged_count(dynamodb_env: None) -> None:
    main(["create-tables"])
    engine = build_engine(load_config())
    out = run(_build_parser().parse_args(["cleanup-monitoring", "--retention-days", "30"]), engine)
    assert out == {"purged": 0}
