"""Notification schemas.

Shared by the repository, the realtime dispatcher (which validates raw insert
events into ``NotificationResponse``) and the HTTP layer.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from crm_notifications.utils.timeutils import ensure_utc, utcnow


class NotificationType(str, Enum):
    DEAL_ASSIGNMENT = "deal_assignment"
    TASK_REMINDER = "task_reminder"
    AI_SUGGESTION = "ai_suggestion"
    EMAIL_TRACKING = "email_tracking"
    CALENDAR_REMINDER = "calendar_reminder"
    WORKFLOW_UPDATE = "workflow_update"
    MENTION = "mention"
    LEAD_ENGAGEMENT = "lead_engagement"
    DEAL_STAGE_CHANGE = "deal_stage_change"
    SYSTEM = "system"


class EntityType(str, Enum):
    DEAL = "deal"
    CONTACT = "contact"
    COMPANY = "company"
    TASK = "task"
    EMAIL = "email"
    CALENDAR_EVENT = "calendar_event"
    WORKFLOW = "workflow"
    SYSTEM = "system"


class NotificationPriority(str, Enum):
    """Visual weight only; delivery order is never affected."""

    URGENT = "urgent"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETRYING = "retrying"


class NotificationResponse(BaseModel):
    """A notification as seen by consumers.

    Built either from a ``UserNotification`` row or from a raw insert event,
    which carries the column name ``metadata`` instead of ``extra_data``.
    """

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    user_id: int
    type: NotificationType
    title: str
    content: str
    entity_type: Optional[EntityType] = None
    entity_id: Optional[str] = None
    action_url: Optional[str] = None
    action_text: Optional[str] = None
    is_read: bool = False
    is_dismissed: bool = False
    priority: NotificationPriority = NotificationPriority.NORMAL
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("extra_data", "metadata"),
    )
    created_at: datetime
    expires_at: Optional[datetime] = None
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    retry_count: int = 0

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> str:
        return str(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def default_metadata(cls, v: Any) -> Any:
        return v or {}

    @field_validator("created_at", "expires_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def is_unread(self) -> bool:
        """Counts toward the unread badge."""
        return not self.is_read and not self.is_dismissed

    def is_expired(self, at: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= ensure_utc(at or utcnow())


class NotificationFilters(BaseModel):
    """Conjunctive listing filters. Unset fields do not constrain."""

    type: Optional[NotificationType] = None
    is_read: Optional[bool] = None
    is_dismissed: Optional[bool] = None
    priority: Optional[NotificationPriority] = None
    entity_type: Optional[EntityType] = None
    entity_id: Optional[str] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    search: Optional[str] = None
    exclude_expired: bool = False

    @field_validator("from_date", "to_date")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    def matches(self, notification: NotificationResponse, at: Optional[datetime] = None) -> bool:
        """Evaluate the same predicates the repository applies in SQL."""
        if self.type is not None and notification.type != self.type:
            return False
        if self.is_read is not None and notification.is_read != self.is_read:
            return False
        if self.is_dismissed is not None and notification.is_dismissed != self.is_dismissed:
            return False
        if self.priority is not None and notification.priority != self.priority:
            return False
        if self.entity_type is not None and notification.entity_type != self.entity_type:
            return False
        if self.entity_id is not None and notification.entity_id != self.entity_id:
            return False
        if self.from_date is not None and notification.created_at < self.from_date:
            return False
        if self.to_date is not None and notification.created_at > self.to_date:
            return False
        if self.search:
            needle = self.search.lower()
            if needle not in notification.title.lower() and needle not in notification.content.lower():
                return False
        if self.exclude_expired and notification.is_expired(at):
            return False
        return True


class NotificationCreate(BaseModel):
    """Schema for creating a new notification (producer side)."""

    type: NotificationType = NotificationType.SYSTEM
    title: str = Field(min_length=1, max_length=255)
    content: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    entity_type: Optional[EntityType] = None
    entity_id: Optional[str] = Field(default=None, max_length=64)
    action_url: Optional[str] = Field(default=None, max_length=500)
    action_text: Optional[str] = Field(default=None, max_length=100)
    metadata: Optional[dict[str, Any]] = None
    expires_at: Optional[datetime] = None
    target_user_id: Optional[int] = None  # None = the caller


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    limit: int
    offset: int


class NotificationStats(BaseModel):
    total: int = 0
    unread: int = 0


class UnreadCountResponse(BaseModel):
    count: int = 0


class NotificationActionResult(BaseModel):
    success: bool = True
    notification_id: str
    updated: bool


class BulkActionResult(BaseModel):
    success: bool = True
    count: int
