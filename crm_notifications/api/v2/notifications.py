"""Notifications API - User notification management.

Provides endpoints for listing, reading, dismissing and creating the current
user's notifications, and for their notification preferences.
"""

from fastapi import APIRouter, Query, status
from typing import Optional
from datetime import datetime
import logging

from pydantic import BaseModel

from crm_notifications.api.deps import CurrentUser, Producer, Repository
from crm_notifications.config import settings
from crm_notifications.exceptions import ForbiddenError, NotFoundError
from crm_notifications.schemas.notification import (
    BulkActionResult,
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
    NotificationPreferencesResponse,
    NotificationPreferencesUpdate,
)
from crm_notifications.services.preferences import resolve_preferences

logger = logging.getLogger(__name__)

router = APIRouter()


class NotificationCreateResult(BaseModel):
    created: bool
    notification: Optional[NotificationResponse] = None


# Sample content per type for the test endpoint
_TEST_CONTENT = {
    NotificationType.DEAL_ASSIGNMENT: ("New deal assigned", "You have been assigned a new deal."),
    NotificationType.TASK_REMINDER: ("Task due soon", "A task assigned to you is due within the hour."),
    NotificationType.AI_SUGGESTION: ("Suggested next step", "Follow up with a contact who opened your proposal."),
    NotificationType.EMAIL_TRACKING: ("Email opened", "Your email was just opened."),
    NotificationType.CALENDAR_REMINDER: ("Meeting starting", "Your next meeting starts in 15 minutes."),
    NotificationType.WORKFLOW_UPDATE: ("Workflow finished", "An automation workflow completed successfully."),
    NotificationType.MENTION: ("You were mentioned", "A teammate mentioned you in a note."),
    NotificationType.LEAD_ENGAGEMENT: ("Lead engaged", "A lead visited your pricing page."),
    NotificationType.DEAL_STAGE_CHANGE: ("Deal moved", "A deal moved to a new stage."),
    NotificationType.SYSTEM: ("Test notification", "This is a test notification."),
}


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    repository: Repository,
    limit: int = Query(settings.NOTIFICATIONS_PAGE_SIZE, ge=1, le=100),
    offset: int = Query(0, ge=0),
    type: Optional[NotificationType] = None,
    is_read: Optional[bool] = None,
    is_dismissed: Optional[bool] = None,
    priority: Optional[NotificationPriority] = None,
    entity_type: Optional[EntityType] = None,
    entity_id: Optional[str] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    search: Optional[str] = Query(None, max_length=200),
    include_expired: bool = False,
):
    """List notifications for the current user, newest first."""
    filters = NotificationFilters(
        type=type,
        is_read=is_read,
        is_dismissed=is_dismissed,
        priority=priority,
        entity_type=entity_type,
        entity_id=entity_id,
        from_date=from_date,
        to_date=to_date,
        search=search,
        exclude_expired=not include_expired,
    )
    items = await repository.list(filters, limit=limit, offset=offset)
    return NotificationListResponse(items=items, limit=limit, offset=offset)


@router.get("/stats", response_model=NotificationStats)
async def get_notification_stats(repository: Repository):
    """Get notification statistics for the current user."""
    total = await repository.total_count()
    unread = await repository.unread_count()
    return NotificationStats(total=total, unread=unread)


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(repository: Repository):
    return UnreadCountResponse(count=await repository.unread_count())


@router.get("/preferences", response_model=NotificationPreferencesResponse)
async def get_preferences(repository: Repository):
    """Stored preferences, or the defaults when the user never saved any."""
    stored = await repository.get_preferences()
    return NotificationPreferencesResponse(
        preferences=resolve_preferences(stored),
        is_default=stored is None,
    )


@router.patch("/preferences", response_model=NotificationPreferencesResponse)
async def update_preferences(update: NotificationPreferencesUpdate, repository: Repository):
    """Merge the sent fields into the stored preferences."""
    await repository.update_preferences(update)
    stored = await repository.get_preferences()
    return NotificationPreferencesResponse(preferences=resolve_preferences(stored), is_default=False)


@router.post("/read-all", response_model=BulkActionResult)
async def mark_all_notifications_read(repository: Repository):
    """Mark all notifications as read."""
    return BulkActionResult(count=await repository.mark_all_read())


@router.post("/dismiss-all", response_model=BulkActionResult)
async def dismiss_all_notifications(repository: Repository):
    return BulkActionResult(count=await repository.dismiss_all())


@router.post("/{notification_id}/read", response_model=NotificationActionResult)
async def mark_notification_read(notification_id: str, repository: Repository):
    """Mark a notification as read. Repeating the call is a no-op."""
    updated = await repository.mark_read(notification_id)
    if not updated and await repository.get(notification_id) is None:
        raise NotFoundError("Notification", notification_id)
    return NotificationActionResult(notification_id=notification_id, updated=updated)


@router.post("/{notification_id}/dismiss", response_model=NotificationActionResult)
async def dismiss_notification(notification_id: str, repository: Repository):
    updated = await repository.dismiss(notification_id)
    if not updated and await repository.get(notification_id) is None:
        raise NotFoundError("Notification", notification_id)
    return NotificationActionResult(notification_id=notification_id, updated=updated)


@router.post("", response_model=NotificationCreateResult, status_code=status.HTTP_201_CREATED)
async def create_notification(
    notification_data: NotificationCreate,
    current_user: CurrentUser,
    producer: Producer,
):
    """
    Create a notification and push it to the recipient's live connections.

    Only superusers may address another user. When the recipient has
    switched the type off nothing is stored and ``created`` is false.
    """
    target_user_id = notification_data.target_user_id or current_user.id
    if target_user_id != current_user.id and not current_user.is_superuser:
        raise ForbiddenError("Only administrators can notify other users")
    if target_user_id != current_user.id and not await producer.recipient_exists(target_user_id):
        raise NotFoundError("User", str(target_user_id))

    notification = await producer.create(target_user_id, notification_data)
    return NotificationCreateResult(created=notification is not None, notification=notification)


@router.post("/test", response_model=NotificationCreateResult, status_code=status.HTTP_201_CREATED)
async def create_test_notification(
    current_user: CurrentUser,
    producer: Producer,
    type: NotificationType = NotificationType.SYSTEM,
):
    """Send the caller a sample notification of ``type``."""
    title, content = _TEST_CONTENT[type]
    notification = await producer.create(
        current_user.id,
        NotificationCreate(type=type, title=title, content=content, metadata={"test": True}),
    )
    return NotificationCreateResult(created=notification is not None, notification=notification)
