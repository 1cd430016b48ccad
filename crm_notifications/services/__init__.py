# Services module
from crm_notifications.services.consumers import NotificationBell, NotificationCenter, ToastStack
from crm_notifications.services.event_sources import InMemoryEventSource, PostgresEventSource
from crm_notifications.services.notification_producer import NotificationProducer
from crm_notifications.services.notification_repository import NotificationRepository
from crm_notifications.services.realtime_dispatcher import RealtimeDispatcher
from crm_notifications.services.toast_queue import ToastQueue
from crm_notifications.services.websocket_manager import NotificationConnectionManager

__all__ = [
    "InMemoryEventSource",
    "PostgresEventSource",
    "NotificationProducer",
    "NotificationRepository",
    "RealtimeDispatcher",
    "ToastQueue",
    "NotificationBell",
    "NotificationCenter",
    "ToastStack",
    "NotificationConnectionManager",
]
