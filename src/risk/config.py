"""
Takeover guard configuration.

Values are read from environment variables with sensible defaults; a YAML file
(see `config/dev.yaml`) can override any of them:

    cfg = load_config("config/dev.yaml")
    engine = build_engine(cfg)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, ClassVar, Literal

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveInt,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError


DEFAULT_SENSITIVE_ACTIVITY_TYPES: tuple[str, ...] = (
    "PASSWORD_CHANGE",
    "EMAIL_CHANGE",
    "SECURITY_SETTINGS_CHANGE",
    "PAYMENT_METHOD_CHANGE",
)


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip() or default


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class RiskConfig:
    """Thresholds and windows for the rule cascade."""

    suspicious_lookback_days: int = 7
    failed_login_window_hours: int = 24
    failed_login_threshold: int = 3
    habitual_min_count: int = 3  # weekday/hour seen fewer times than this is unusual
    sensitive_activity_types: frozenset[str] = frozenset(DEFAULT_SENSITIVE_ACTIVITY_TYPES)
    fail_closed_sensitive: bool = field(
        default_factory=lambda: _env_bool("TAKEOVERGUARD_FAIL_CLOSED_SENSITIVE", False)
    )
    default_monitoring_days: int = 30
    monitoring_retention_days: int = 90
    persistence_attempts: int = 2

    def as_dict(self) -> dict[str, Any]:
        out = {f.name: getattr(self, f.name) for f in fields(self)}
        out["sensitive_activity_types"] = sorted(self.sensitive_activity_types)
        return out


@dataclass(frozen=True)
class StorageConfig:
    backend: str = field(default_factory=lambda: _env("TAKEOVERGUARD_STORAGE", "memory"))
    region: str = field(default_factory=lambda: _env("AWS_REGION", "us-east-1"))
    table_prefix: str = field(
        default_factory=lambda: _env("TAKEOVERGUARD_TABLE_PREFIX", "takeoverguard-dev")
    )
    endpoint_url: str | None = field(
        default_factory=lambda: _env("TAKEOVERGUARD_DYNAMODB_ENDPOINT") or None
    )
    profile: str | None = field(default_factory=lambda: _env("AWS_PROFILE") or None)


@dataclass(frozen=True)
class AppConfig:
    """Top-level config aggregator: pass one instance to `build_engine`."""

    risk: RiskConfig = field(default_factory=RiskConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


# ── YAML section schemas ─────────────────────────────────────────────────────


class _Section(BaseModel):
    """Keys a YAML section may set. Keys left out keep their defaults."""

    model_config = ConfigDict(extra="forbid")

    nullable: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="after")
    def _reject_empty_values(self) -> "_Section":
        empty = sorted(
            name
            for name in self.model_fields_set
            if getattr(self, name) is None and name not in self.nullable
        )
        if empty:
            raise ValueError(f"missing value for {', '.join(empty)}")
        return self


class _RiskSection(_Section):
    suspicious_lookback_days: PositiveInt | None = None
    failed_login_window_hours: PositiveInt | None = None
    failed_login_threshold: PositiveInt | None = None
    habitual_min_count: NonNegativeInt | None = None
    sensitive_activity_types: frozenset[str] | None = None
    fail_closed_sensitive: bool | None = None
    default_monitoring_days: PositiveInt | None = None
    monitoring_retention_days: PositiveInt | None = None
    persistence_attempts: PositiveInt | None = None

    @field_validator("sensitive_activity_types")
    @classmethod
    def _normalize_types(cls, value: frozenset[str] | None) -> frozenset[str] | None:
        if value is None:
            return None
        names = frozenset(v.strip().upper() for v in value)
        if "" in names:
            raise ValueError("activity type names must not be blank")
        return names


class _StorageSection(_Section):
    nullable: ClassVar[frozenset[str]] = frozenset({"endpoint_url", "profile"})

    backend: Literal["memory", "dynamodb"] | None = None
    region: str | None = Field(default=None, min_length=1)
    table_prefix: str | None = Field(default=None, min_length=1)
    endpoint_url: str | None = None
    profile: str | None = None

    @field_validator("backend", mode="before")
    @classmethod
    def _lower_backend(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Config at {path} is not valid YAML: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config at {path} must be a mapping of sections")
    return data


def _apply_section(
    base: Any, section: dict[str, Any], *, name: str, schema: type[_Section]
) -> Any:
    try:
        parsed = schema.model_validate(section)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or name}: {err['msg']}" for err in exc.errors()
        )
        raise ValueError(f"Invalid config section '{name}': {problems}") from exc
    return replace(base, **parsed.model_dump(exclude_unset=True))


def load_config(path: str | Path | None = None) -> AppConfig:
    """Environment defaults, overridden by the optional YAML file at *path*."""

    cfg = AppConfig()
    if path is None:
        return cfg

    data = _read_yaml(Path(path))
    unknown = sorted(set(data) - {"risk", "storage"})
    if unknown:
        raise ValueError(f"Unknown config sections: {', '.join(unknown)}")

    risk_section = data.get("risk") or {}
    storage_section = data.get("storage") or {}
    if not isinstance(risk_section, dict) or not isinstance(storage_section, dict):
        raise ValueError(f"Config sections in {path} must be mappings")

    return AppConfig(
        risk=_apply_section(cfg.risk, risk_section, name="risk", schema=_RiskSection),
        storage=_apply_section(
            cfg.storage, storage_section, name="storage", schema=_StorageSection
        ),
    )


__all__ = [
    "AppConfig",
    "DEFAULT_SENSITIVE_ACTIVITY_TYPES",
    "RiskConfig",
    "StorageConfig",
    "load_config",
]
