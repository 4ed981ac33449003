from __future__ import annotations

from datetime import datetime, timezone
from pydantic import BaseModel, Field, ConfigDict, field_validator


UNKNOWN = "unknown"


class UserAgentInfo(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    browser: str = Field(UNKNOWN, description="Browser family and version, e.g. 'Chrome 120.0'")
    os: str = Field(UNKNOWN, description="Operating system family and version")
    device_class: str = Field("desktop", description="mobile, tablet, desktop or bot")
    raw: str | None = Field(None, description="Original User-Agent header, if available")

    @field_validator("browser", "os", "device_class")
    @classmethod
    def _blank_is_unknown(cls, value: str) -> str:
        value = value.strip()
        return value or UNKNOWN


class GeoLocation(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    country: str = UNKNOWN
    region: str = UNKNOWN
    city: str = UNKNOWN

    @field_validator("country", "region", "city")
    @classmethod
    def _blank_is_unknown(cls, value: str) -> str:
        value = value.strip()
        return value or UNKNOWN

    @property
    def location_key(self) -> str:
        """Baseline location key, `"{country}/{region}"`."""
        return f"{self.country}/{self.region}"


class ActivityContext(BaseModel):
    """Normalized description of one login or account operation."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    user_id: str = Field(..., min_length=1, description="Account identifier (non-empty)")
    ip: str = Field(..., min_length=1, description="Client IP address")
    user_agent: UserAgentInfo = Field(default_factory=UserAgentInfo)
    geo: GeoLocation = Field(default_factory=GeoLocation)
    timestamp: datetime = Field(..., description="Activity time as a timezone-aware UTC timestamp")

    @field_validator("timestamp")
    @classmethod
    def _timestamp_must_be_tz_aware_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            raise ValueError("timestamp must be timezone-aware (UTC)")
        return value.astimezone(timezone.utc)

    @field_validator("user_id", "ip")
    @classmethod
    def _strip_and_require_non_empty(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must be non-empty")
        return value

    @property
    def browser(self) -> str:
        return self.user_agent.browser

    @property
    def device_class(self) -> str:
        return self.user_agent.device_class

    @property
    def location(self) -> str:
        return self.geo.location_key

    @property
    def weekday(self) -> int:
        """Day of week with 0 = Sunday through 6 = Saturday."""
        return self.timestamp.isoweekday() % 7

    @property
    def hour(self) -> int:
        return self.timestamp.hour
