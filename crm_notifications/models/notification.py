"""Notification model for in-app notifications."""

from sqlalchemy import Column, String, DateTime, Text, Integer, Boolean, ForeignKey, JSON, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func
import uuid

from crm_notifications.database import Base
from crm_notifications.utils.timeutils import utcnow


class UserNotification(Base):
    """A single user-facing event record. Visible only to its owner."""

    __tablename__ = "user_notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)

    # Owner
    user_id = Column(Integer, ForeignKey("api_users.id"), nullable=False, index=True)

    # Content
    type = Column(String(50), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)

    # Weak reference to the subject record (deal, contact, task, ...)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(64), nullable=True)

    # Navigation affordance
    action_url = Column(String(500), nullable=True)
    action_text = Column(String(100), nullable=True)

    # Lifecycle flags, both only ever move false -> true
    is_read = Column(Boolean, nullable=False, default=False)
    is_dismissed = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    dismissed_at = Column(DateTime(timezone=True), nullable=True)

    priority = Column(String(10), nullable=False, default="normal")

    # "metadata" is reserved on declarative classes
    extra_data = Column("metadata", JSON, nullable=True)

    created_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True
    )
    expires_at = Column(DateTime(timezone=True), nullable=True)

    # Owned by the producing side
    delivery_status = Column(String(20), nullable=False, default="pending")
    retry_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_user_notifications_user_unread", "user_id", "is_read", "is_dismissed"),
    )

    def __repr__(self):
        return f"<UserNotification {self.type}: {self.title[:30]}>"
