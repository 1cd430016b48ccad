from crm_notifications.models.user import User
from crm_notifications.models.notification import UserNotification
from crm_notifications.models.user_settings import UserSettings

__all__ = [
    "User",
    "UserNotification",
    "UserSettings",
]
