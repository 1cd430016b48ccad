"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation.
"""

from .user import UserFactory, AdminUserFactory, InactiveUserFactory
from .notification import (
    NotificationFactory,
    DealNotificationFactory,
    NotificationRowFactory,
    ReadNotificationRowFactory,
    DismissedNotificationRowFactory,
)

__all__ = [
    "UserFactory",
    "AdminUserFactory",
    "InactiveUserFactory",
    # Notifications
    "NotificationFactory",
    "DealNotificationFactory",
    "NotificationRowFactory",
    "ReadNotificationRowFactory",
    "DismissedNotificationRowFactory",
]
