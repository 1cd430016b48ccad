from crm_notifications.schemas.notification import (
    BulkActionResult,
    DeliveryStatus,
    EntityType,
    NotificationActionResult,
    NotificationCreate,
    NotificationFilters,
    NotificationListResponse,
    NotificationPriority,
    NotificationResponse,
    NotificationStats,
    NotificationType,
    UnreadCountResponse,
)
from crm_notifications.schemas.notification_preferences import (
    DeliveryFrequency,
    NotificationPreferences,
    NotificationPreferencesResponse,
    NotificationPreferencesUpdate,
    QuietHours,
    QuietHoursUpdate,
)

__all__ = [
    "BulkActionResult",
    "DeliveryFrequency",
    "DeliveryStatus",
    "EntityType",
    "NotificationActionResult",
    "NotificationCreate",
    "NotificationFilters",
    "NotificationListResponse",
    "NotificationPreferences",
    "NotificationPreferencesResponse",
    "NotificationPreferencesUpdate",
    "NotificationPriority",
    "NotificationResponse",
    "NotificationStats",
    "NotificationType",
    "QuietHours",
    "QuietHoursUpdate",
    "UnreadCountResponse",
]
