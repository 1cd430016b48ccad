"""Per-user settings document holding notification preferences."""

from sqlalchemy import Column, Integer, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func

from crm_notifications.database import Base


class UserSettings(Base):
    """One row per user; created lazily on the first preference save."""

    __tablename__ = "user_settings"

    user_id = Column(Integer, ForeignKey("api_users.id"), primary_key=True)
    notification_preferences = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<UserSettings user_id={self.user_id}>"
