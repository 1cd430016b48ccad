"""
Notification test factories.

``NotificationFactory`` builds realtime insert events (plain dicts shaped like
the ``user_notifications`` row, ``metadata`` key included).
``NotificationRowFactory`` builds unsaved ``UserNotification`` ORM objects.
"""

from datetime import timedelta
import uuid

import factory
from faker import Faker

from crm_notifications.models.notification import UserNotification
from crm_notifications.schemas.notification import NotificationType
from crm_notifications.utils.timeutils import utcnow

fake = Faker()

_TITLES = [
    "New deal assigned",
    "Task due soon",
    "Email opened",
    "Meeting starting",
    "You were mentioned",
    "Deal moved to Negotiation",
]


class NotificationFactory(factory.Factory):
    """
    Factory for realtime notification events.

    Usage:
        event = NotificationFactory(user_id=1)
        event = NotificationFactory(user_id=1, type="mention", is_read=True)
    """

    class Meta:
        model = dict

    id = factory.LazyFunction(lambda: str(uuid.uuid4()))
    user_id = factory.Sequence(lambda n: n + 1)
    type = factory.LazyFunction(lambda: fake.random_element([t.value for t in NotificationType]))
    title = factory.LazyFunction(lambda: fake.random_element(_TITLES))
    content = factory.LazyFunction(fake.sentence)
    entity_type = None
    entity_id = None
    action_url = None
    action_text = None
    is_read = False
    is_dismissed = False
    priority = "normal"
    metadata = factory.LazyFunction(dict)
    created_at = factory.LazyFunction(lambda: utcnow().isoformat())
    expires_at = None
    delivery_status = "delivered"
    retry_count = 0


class DealNotificationFactory(NotificationFactory):
    type = NotificationType.DEAL_ASSIGNMENT.value
    title = "New deal assigned"
    entity_type = "deal"
    entity_id = factory.LazyFunction(lambda: str(fake.random_int(min=1, max=5000)))
    action_url = factory.LazyAttribute(lambda obj: f"/deals/{obj.entity_id}")
    action_text = "View deal"


class NotificationRowFactory(factory.Factory):
    """Unsaved ``UserNotification`` rows; add them to a session yourself."""

    class Meta:
        model = UserNotification

    id = factory.LazyFunction(uuid.uuid4)
    type = NotificationType.SYSTEM.value
    title = factory.LazyFunction(lambda: fake.random_element(_TITLES))
    content = factory.LazyFunction(fake.sentence)
    is_read = False
    is_dismissed = False
    priority = "normal"
    extra_data = factory.LazyFunction(dict)
    # Spread rows out so newest-first ordering is deterministic
    created_at = factory.Sequence(lambda n: utcnow() - timedelta(hours=1) + timedelta(seconds=n))
    delivery_status = "delivered"
    retry_count = 0


class ReadNotificationRowFactory(NotificationRowFactory):
    is_read = True
    read_at = factory.LazyFunction(utcnow)


class DismissedNotificationRowFactory(NotificationRowFactory):
    is_dismissed = True
    dismissed_at = factory.LazyFunction(utcnow)
