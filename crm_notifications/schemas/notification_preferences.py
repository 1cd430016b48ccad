"""Notification preference documents.

Stored as one JSON document per user. Unknown keys are ignored rather than
rejected so that older clients can keep saving whole documents.
"""

from enum import Enum
from typing import Annotated, Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from crm_notifications.schemas.notification import NotificationType

ClockTime = Annotated[str, StringConstraints(pattern=r"^([01]\d|2[0-3]):[0-5]\d$")]


class DeliveryFrequency(str, Enum):
    """Stored for digest producers; realtime delivery ignores it."""

    REALTIME = "realtime"
    HOURLY = "hourly"
    DAILY = "daily"


def _validate_timezone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    try:
        ZoneInfo(v)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {v}") from exc
    return v


def _known_types(v: Any) -> Any:
    """Drop keys that are not notification types."""
    if not isinstance(v, dict):
        return v
    known = {t.value for t in NotificationType}
    return {key: value for key, value in v.items() if str(getattr(key, "value", key)) in known}


def _all_types_enabled() -> dict[NotificationType, bool]:
    return {notification_type: True for notification_type in NotificationType}


class QuietHours(BaseModel):
    """Wall-clock window ``[start, end)``; wraps midnight when start > end."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = False
    start: ClockTime = "22:00"
    end: ClockTime = "08:00"
    timezone: str = "UTC"

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v):
        return _validate_timezone(v)


class NotificationPreferences(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email_notifications: bool = True
    push_notifications: bool = True
    sound_enabled: bool = True
    notification_types: dict[NotificationType, bool] = Field(default_factory=_all_types_enabled)
    quiet_hours: QuietHours = Field(default_factory=QuietHours)
    frequency: DeliveryFrequency = DeliveryFrequency.REALTIME

    @field_validator("notification_types", mode="before")
    @classmethod
    def fill_notification_types(cls, v: Any) -> Any:
        v = _known_types(v)
        if not isinstance(v, dict):
            return v
        merged = {t.value: True for t in NotificationType}
        merged.update({str(getattr(k, "value", k)): value for k, value in v.items()})
        return merged

    def is_type_enabled(self, notification_type: NotificationType | str) -> bool:
        return self.notification_types.get(NotificationType(notification_type), True)


class QuietHoursUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: Optional[bool] = None
    start: Optional[ClockTime] = None
    end: Optional[ClockTime] = None
    timezone: Optional[str] = None

    @field_validator("timezone")
    @classmethod
    def check_timezone(cls, v):
        return _validate_timezone(v)


class NotificationPreferencesUpdate(BaseModel):
    """Partial update; only the fields that were sent are merged."""

    model_config = ConfigDict(extra="ignore")

    email_notifications: Optional[bool] = None
    push_notifications: Optional[bool] = None
    sound_enabled: Optional[bool] = None
    notification_types: Optional[dict[NotificationType, bool]] = None
    quiet_hours: Optional[QuietHoursUpdate] = None
    frequency: Optional[DeliveryFrequency] = None

    @field_validator("notification_types", mode="before")
    @classmethod
    def drop_unknown_types(cls, v: Any) -> Any:
        return _known_types(v)

    def to_patch(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True, exclude_none=True)


class NotificationPreferencesResponse(BaseModel):
    preferences: NotificationPreferences
    is_default: bool
