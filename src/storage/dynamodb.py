"""DynamoDB-backed stores (boto3).

Baseline merges never read-modify-write the whole item. Sets grow with `ADD`, the
weekday/hour counters are top-level numbers bumped with `ADD`, and the first/last
seen timestamps move through conditional updates so that concurrent or
out-of-order merges cannot lose each other's changes.

Timestamps are stored as fixed-width UTC strings, so lexical order is time order.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterator

import boto3
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

from common.best_effort import best_effort
from common.logging_utils import get_logger
from risk.audit import ActivityLogEntry
from risk.baseline import BaselineObservation, UserBaseline
from risk.config import StorageConfig
from risk.errors import PersistenceError
from risk.monitoring import MonitoringState
from risk.risk_rules import MonitoringLevel, RiskLevel
from risk.suspicious import ReviewStatus, SuspiciousActivityFilters, SuspiciousActivityRecord


logger = get_logger(__name__)

TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"
USER_CREATED_INDEX = "user_id-created_at-index"


def _ts(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(TS_FORMAT)


def _parse_ts(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    return datetime.strptime(str(value), TS_FORMAT).replace(tzinfo=timezone.utc)


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


def _drop_none(item: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in item.items() if v is not None}


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


@dataclass(frozen=True)
class TableNames:
    baselines: str
    monitoring: str
    suspicious_activities: str
    activity_log: str

    @classmethod
    def from_prefix(cls, prefix: str) -> "TableNames":
        return cls(
            baselines=f"{prefix}-baselines",
            monitoring=f"{prefix}-monitoring",
            suspicious_activities=f"{prefix}-suspicious-activities",
            activity_log=f"{prefix}-activity-log",
        )


def dynamodb_resource(cfg: StorageConfig) -> Any:
    session = boto3.Session(profile_name=cfg.profile, region_name=cfg.region)
    return session.resource("dynamodb", endpoint_url=cfg.endpoint_url)


def create_tables(dynamodb: Any, names: TableNames) -> list[str]:
    """Create any missing table (pay-per-request). Returns the names created."""

    definitions: list[dict[str, Any]] = [
        {
            "TableName": names.baselines,
            "KeySchema": [{"AttributeName": "user_id", "KeyType": "HASH"}],
            "AttributeDefinitions": [{"AttributeName": "user_id", "AttributeType": "S"}],
        },
        {
            "TableName": names.monitoring,
            "KeySchema": [{"AttributeName": "user_id", "KeyType": "HASH"}],
            "AttributeDefinitions": [{"AttributeName": "user_id", "AttributeType": "S"}],
        },
        {
            "TableName": names.suspicious_activities,
            "KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}],
            "AttributeDefinitions": [
                {"AttributeName": "id", "AttributeType": "S"},
                {"AttributeName": "user_id", "AttributeType": "S"},
                {"AttributeName": "created_at", "AttributeType": "S"},
            ],
            "GlobalSecondaryIndexes": [
                {
                    "IndexName": USER_CREATED_INDEX,
                    "KeySchema": [
                        {"AttributeName": "user_id", "KeyType": "HASH"},
                        {"AttributeName": "created_at", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                }
            ],
        },
        {
            "TableName": names.activity_log,
            "KeySchema": [
                {"AttributeName": "user_id", "KeyType": "HASH"},
                {"AttributeName": "sk", "KeyType": "RANGE"},
            ],
            "AttributeDefinitions": [
                {"AttributeName": "user_id", "AttributeType": "S"},
                {"AttributeName": "sk", "AttributeType": "S"},
            ],
        },
    ]

    created: list[str] = []
    for definition in definitions:
        try:
            table = dynamodb.create_table(BillingMode="PAY_PER_REQUEST", **definition)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "ResourceInUseException":
                continue
            raise
        table.wait_until_exists()
        created.append(definition["TableName"])
        logger.info("dynamodb table created name=%s", definition["TableName"])
    return created


def _paginate(call: Any, **kwargs: Any) -> Iterator[dict[str, Any]]:
    """Yield every page of a query/scan call, following LastEvaluatedKey."""

    while True:
        resp = call(**kwargs)
        yield resp
        last = resp.get("LastEvaluatedKey")
        if not last:
            return
        kwargs["ExclusiveStartKey"] = last


# ── Baselines ────────────────────────────────────────────────────────────────


def _baseline_from_item(item: dict[str, Any]) -> UserBaseline:
    day_histogram: dict[int, int] = {}
    hour_histogram: dict[int, int] = {}
    for name, value in item.items():
        if name.startswith("day_"):
            day_histogram[int(name[4:])] = int(value)
        elif name.startswith("hour_"):
            hour_histogram[int(name[5:])] = int(value)

    first_seen = _parse_ts(item.get("first_seen_at"))
    last_seen = _parse_ts(item.get("last_seen_at"))
    if first_seen is None or last_seen is None:
        raise PersistenceError(f"baseline for {item.get('user_id')} has no timestamps")

    return UserBaseline(
        user_id=str(item["user_id"]),
        first_seen_at=first_seen,
        last_seen_at=last_seen,
        known_ips=frozenset(item.get("known_ips") or ()),
        known_device_classes=frozenset(item.get("known_device_classes") or ()),
        known_browsers=frozenset(item.get("known_browsers") or ()),
        known_locations=frozenset(item.get("known_locations") or ()),
        day_histogram=day_histogram,
        hour_histogram=hour_histogram,
    )


class DynamoDBBaselineStore:
    def __init__(self, table: Any) -> None:
        self._table = table

    def get(self, user_id: str) -> UserBaseline | None:
        item = self._table.get_item(Key={"user_id": user_id}, ConsistentRead=True).get("Item")
        return _baseline_from_item(item) if item else None

    def apply(self, user_id: str, obs: BaselineObservation) -> UserBaseline:
        ts = _ts(obs.timestamp)
        # The ADD is the only step that is not safe to repeat, so nothing after it may raise.
        resp = self._table.update_item(
            Key={"user_id": user_id},
            UpdateExpression=(
                "SET first_seen_at = if_not_exists(first_seen_at, :ts), "
                "last_seen_at = if_not_exists(last_seen_at, :ts) "
                "ADD known_ips :ip, known_device_classes :dev, known_browsers :browser, "
                "known_locations :loc, #day :one, #hour :one"
            ),
            ExpressionAttributeNames={"#day": f"day_{obs.weekday}", "#hour": f"hour_{obs.hour}"},
            ExpressionAttributeValues={
                ":ts": ts,
                ":ip": {obs.ip},
                ":dev": {obs.device_class},
                ":browser": {obs.browser},
                ":loc": {obs.location},
                ":one": 1,
            },
            ReturnValues="ALL_NEW",
        )
        item = dict(resp["Attributes"])
        best_effort(
            "baseline_timestamp", self._move_timestamp, user_id, "last_seen_at", ts, later=True
        )
        best_effort(
            "baseline_timestamp", self._move_timestamp, user_id, "first_seen_at", ts, later=False
        )
        item["last_seen_at"] = max(str(item["last_seen_at"]), ts)
        item["first_seen_at"] = min(str(item["first_seen_at"]), ts)
        return _baseline_from_item(item)

    def _move_timestamp(self, user_id: str, attr: str, ts: str, *, later: bool) -> None:
        op = "<" if later else ">"
        try:
            self._table.update_item(
                Key={"user_id": user_id},
                UpdateExpression=f"SET {attr} = :ts",
                ConditionExpression=f"{attr} {op} :ts",
                ExpressionAttributeValues={":ts": ts},
            )
        except ClientError as exc:
            if not _is_conditional_failure(exc):
                raise

    def delete(self, user_id: str) -> bool:
        resp = self._table.delete_item(Key={"user_id": user_id}, ReturnValues="ALL_OLD")
        return bool(resp.get("Attributes"))


# ── Monitoring ───────────────────────────────────────────────────────────────


def _monitoring_from_item(item: dict[str, Any]) -> MonitoringState:
    return MonitoringState(
        user_id=str(item["user_id"]),
        level=MonitoringLevel(str(item["level"])),
        reason=str(item.get("reason") or ""),
        enabled_at=_parse_ts(item["enabled_at"]),  # type: ignore[arg-type]
        expires_at=_parse_ts(item["expires_at"]),  # type: ignore[arg-type]
        enabled_by=str(item.get("enabled_by") or "system"),
        disabled_at=_parse_ts(item.get("disabled_at")),
        disabled_by=item.get("disabled_by"),
    )


class DynamoDBMonitoringStore:
    def __init__(self, table: Any) -> None:
        self._table = table

    def get(self, user_id: str) -> MonitoringState | None:
        item = self._table.get_item(Key={"user_id": user_id}, ConsistentRead=True).get("Item")
        return _monitoring_from_item(item) if item else None

    def upsert(self, state: MonitoringState) -> None:
        # Whole-item put: a second enable replaces the first, last write wins.
        self._table.put_item(
            Item=_drop_none(
                {
                    "user_id": state.user_id,
                    "level": state.level.value,
                    "reason": state.reason,
                    "enabled_at": _ts(state.enabled_at),
                    "expires_at": _ts(state.expires_at),
                    "enabled_by": state.enabled_by,
                    "disabled_at": _ts(state.disabled_at) if state.disabled_at else None,
                    "disabled_by": state.disabled_by,
                }
            )
        )

    def close(
        self, user_id: str, *, disabled_at: datetime, disabled_by: str
    ) -> MonitoringState | None:
        at = _ts(disabled_at)
        try:
            resp = self._table.update_item(
                Key={"user_id": user_id},
                UpdateExpression="SET disabled_at = :at, disabled_by = :by",
                ConditionExpression=(
                    "attribute_exists(user_id) AND attribute_not_exists(disabled_at) "
                    "AND expires_at > :at"
                ),
                ExpressionAttributeValues={":at": at, ":by": disabled_by},
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return None
            raise
        return _monitoring_from_item(resp["Attributes"])

    def purge(self, *, expired_before: datetime) -> int:
        purged = 0
        for page in _paginate(
            self._table.scan,
            FilterExpression=Attr("expires_at").lt(_ts(expired_before)),
            ProjectionExpression="user_id",
        ):
            for item in page.get("Items", []):
                self._table.delete_item(Key={"user_id": item["user_id"]})
                purged += 1
        return purged


# ── Suspicious activities ────────────────────────────────────────────────────


def _suspicious_to_item(record: SuspiciousActivityRecord) -> dict[str, Any]:
    return _drop_none(
        {
            "id": record.id,
            "user_id": record.user_id,
            "activity_type": record.activity_type,
            "risk_level": record.risk_level.name,
            "ip": record.ip,
            "user_agent": record.user_agent,
            "location": record.location,
            "details": json.dumps(
                record.details, separators=(",", ":"), sort_keys=True, default=_json_default
            ),
            "status": record.status.value,
            "reviewed_at": _ts(record.reviewed_at) if record.reviewed_at else None,
            "reviewed_by": record.reviewed_by,
            "review_notes": record.review_notes,
            "created_at": _ts(record.created_at),
        }
    )


def _suspicious_from_item(item: dict[str, Any]) -> SuspiciousActivityRecord:
    return SuspiciousActivityRecord(
        id=str(item["id"]),
        user_id=str(item["user_id"]),
        activity_type=str(item["activity_type"]),
        risk_level=RiskLevel.parse(str(item["risk_level"])),
        created_at=_parse_ts(item["created_at"]),  # type: ignore[arg-type]
        ip=item.get("ip"),
        user_agent=item.get("user_agent"),
        location=item.get("location"),
        details=json.loads(item.get("details") or "{}"),
        status=ReviewStatus(str(item.get("status") or ReviewStatus.PENDING.value)),
        reviewed_at=_parse_ts(item.get("reviewed_at")),
        reviewed_by=item.get("reviewed_by"),
        review_notes=item.get("review_notes"),
    )


class DynamoDBSuspiciousActivityStore:
    def __init__(self, table: Any) -> None:
        self._table = table

    def add(self, record: SuspiciousActivityRecord) -> None:
        self._table.put_item(Item=_suspicious_to_item(record))

    def get(self, record_id: str) -> SuspiciousActivityRecord | None:
        item = self._table.get_item(Key={"id": record_id}, ConsistentRead=True).get("Item")
        return _suspicious_from_item(item) if item else None

    def review(
        self,
        record_id: str,
        *,
        status: ReviewStatus,
        reviewed_at: datetime,
        reviewed_by: str,
        notes: str | None,
    ) -> SuspiciousActivityRecord | None:
        try:
            resp = self._table.update_item(
                Key={"id": record_id},
                UpdateExpression=(
                    "SET #status = :status, reviewed_at = :at, reviewed_by = :by, "
                    "review_notes = :notes"
                ),
                ConditionExpression="attribute_exists(#id)",
                ExpressionAttributeNames={"#status": "status", "#id": "id"},
                ExpressionAttributeValues={
                    ":status": status.value,
                    ":at": _ts(reviewed_at),
                    ":by": reviewed_by,
                    ":notes": notes,
                },
                ReturnValues="ALL_NEW",
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                return None
            raise
        return _suspicious_from_item(resp["Attributes"])

    def count_since(self, user_id: str, since: datetime) -> int:
        total = 0
        for page in _paginate(
            self._table.query,
            IndexName=USER_CREATED_INDEX,
            KeyConditionExpression=Key("user_id").eq(user_id) & Key("created_at").gt(_ts(since)),
            Select="COUNT",
        ):
            total += int(page.get("Count") or 0)
        return total

    def search(
        self, filters: SuspiciousActivityFilters, *, offset: int, limit: int
    ) -> tuple[list[SuspiciousActivityRecord], int]:
        conditions = []
        if filters.status is not None:
            conditions.append(Attr("status").eq(filters.status.value))
        if filters.risk_level is not None:
            conditions.append(Attr("risk_level").eq(filters.risk_level.name))

        kwargs: dict[str, Any] = {}
        if conditions:
            expr = conditions[0]
            for cond in conditions[1:]:
                expr = expr & cond
            kwargs["FilterExpression"] = expr

        if filters.user_id is not None:
            pages = _paginate(
                self._table.query,
                IndexName=USER_CREATED_INDEX,
                KeyConditionExpression=Key("user_id").eq(filters.user_id),
                ScanIndexForward=False,
                **kwargs,
            )
        else:
            pages = _paginate(self._table.scan, **kwargs)

        records = [_suspicious_from_item(item) for page in pages for item in page.get("Items", [])]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[offset : offset + limit], len(records)


# ── Activity log ─────────────────────────────────────────────────────────────


class DynamoDBActivityLogStore:
    def __init__(self, table: Any) -> None:
        self._table = table

    def append(self, entry: ActivityLogEntry) -> None:
        created = _ts(entry.created_at)
        self._table.put_item(
            Item=_drop_none(
                {
                    "user_id": entry.user_id,
                    "sk": f"{created}#{entry.entry_id}",
                    "entry_id": entry.entry_id,
                    "activity": entry.activity,
                    "created_at": created,
                    "ip": entry.ip,
                    "user_agent": entry.user_agent,
                    "metadata": json.dumps(
                        entry.metadata, separators=(",", ":"), default=_json_default
                    ),
                }
            )
        )

    def count_since(self, user_id: str, activity: str, since: datetime) -> int:
        # '~' sorts after the hex entry ids, so entries stamped exactly at `since` are excluded.
        lower = f"{_ts(since)}#~"
        total = 0
        for page in _paginate(
            self._table.query,
            KeyConditionExpression=Key("user_id").eq(user_id) & Key("sk").gt(lower),
            FilterExpression=Attr("activity").eq(activity),
            Select="COUNT",
        ):
            total += int(page.get("Count") or 0)
        return total

    def recent(self, user_id: str, limit: int = 50) -> list[ActivityLogEntry]:
        resp = self._table.query(
            KeyConditionExpression=Key("user_id").eq(user_id),
            ScanIndexForward=False,
            Limit=limit,
        )
        return [
            ActivityLogEntry(
                user_id=str(item["user_id"]),
                activity=str(item["activity"]),
                created_at=_parse_ts(item["created_at"]),  # type: ignore[arg-type]
                entry_id=str(item["entry_id"]),
                ip=item.get("ip"),
                user_agent=item.get("user_agent"),
                metadata=json.loads(item.get("metadata") or "{}"),
            )
            for item in resp.get("Items", [])
        ]


@dataclass(frozen=True)
class DynamoDBStores:
    baselines: DynamoDBBaselineStore
    monitoring: DynamoDBMonitoringStore
    suspicious_activities: DynamoDBSuspiciousActivityStore
    activity_log: DynamoDBActivityLogStore


def build_dynamodb_stores(dynamodb: Any, names: TableNames) -> DynamoDBStores:
    return DynamoDBStores(
        baselines=DynamoDBBaselineStore(dynamodb.Table(names.baselines)),
        monitoring=DynamoDBMonitoringStore(dynamodb.Table(names.monitoring)),
        suspicious_activities=DynamoDBSuspiciousActivityStore(
            dynamodb.Table(names.suspicious_activities)
        ),
        activity_log=DynamoDBActivityLogStore(dynamodb.Table(names.activity_log)),
    )


__all__ = [
    "DynamoDBActivityLogStore",
    "DynamoDBBaselineStore",
    "DynamoDBMonitoringStore",
    "DynamoDBStores",
    "DynamoDBSuspiciousActivityStore",
    "TableNames",
    "build_dynamodb_stores",
    "create_tables",
    "dynamodb_resource",
]
