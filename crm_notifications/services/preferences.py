"""Preference defaults, merging and quiet-hours evaluation.

Everything here is pure: no I/O, no clock reads unless the caller omits the
instant. Producers and consumers use these helpers to decide whether to play a
sound, raise a toast or hold a notification back; the dispatcher never does.
"""

from datetime import datetime, time
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo

from crm_notifications.schemas.notification import NotificationResponse, NotificationType
from crm_notifications.schemas.notification_preferences import NotificationPreferences, QuietHours
from crm_notifications.utils.timeutils import ensure_utc, utcnow

# Sub-documents merged key by key instead of replaced wholesale
NESTED_SECTIONS = ("notification_types", "quiet_hours")


def default_preferences() -> NotificationPreferences:
    """Sound on, every type enabled, quiet hours off, realtime delivery."""
    return NotificationPreferences()


def resolve_preferences(stored: Optional[NotificationPreferences]) -> NotificationPreferences:
    return stored if stored is not None else default_preferences()


def merge_preferences(current: Optional[Mapping[str, Any]], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Apply ``patch`` on top of ``current`` and return a complete document.

    Fields absent from ``patch`` keep their stored value; unknown keys in
    either input are dropped by validation.
    """
    base = NotificationPreferences.model_validate(dict(current or {})).model_dump(mode="json")
    for key, value in patch.items():
        if key in NESTED_SECTIONS and isinstance(value, Mapping):
            base[key] = {**base.get(key, {}), **value}
        else:
            base[key] = value
    return NotificationPreferences.model_validate(base).model_dump(mode="json")


def parse_clock(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def is_quiet_time(quiet_hours: QuietHours, instant: Optional[datetime] = None) -> bool:
    """Whether ``instant`` falls inside the quiet window.

    The window is ``[start, end)`` in the configured timezone's wall clock and
    wraps midnight when start > end. An equal start and end is an empty window.
    """
    if not quiet_hours.enabled:
        return False

    moment = ensure_utc(instant or utcnow())
    local = moment.astimezone(ZoneInfo(quiet_hours.timezone)).time().replace(tzinfo=None)
    start = parse_clock(quiet_hours.start)
    end = parse_clock(quiet_hours.end)

    if start == end:
        return False
    if start < end:
        return start <= local < end
    return local >= start or local < end


def should_alert(
    preferences: NotificationPreferences,
    notification: NotificationResponse,
    at: Optional[datetime] = None,
) -> bool:
    """Surface immediately (toast, push) unless the type is off or it is quiet time."""
    if not preferences.is_type_enabled(notification.type):
        return False
    return not is_quiet_time(preferences.quiet_hours, at)


def should_play_sound(preferences: NotificationPreferences, at: Optional[datetime] = None) -> bool:
    return preferences.sound_enabled and not is_quiet_time(preferences.quiet_hours, at)


def accepts_type(preferences: Optional[NotificationPreferences], notification_type: NotificationType) -> bool:
    """Producer-side check; users without stored preferences accept everything."""
    return resolve_preferences(preferences).is_type_enabled(notification_type)
