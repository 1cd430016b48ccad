"""Creates notification rows and announces them to realtime listeners.

The producer is the only writer of new rows. It honours the recipient's
per-type switches; quiet hours and frequency are left to consumers, so a
notification created during quiet time is still stored and delivered, just
not surfaced with a toast or sound.
"""

from typing import Any, Callable, Dict, Optional
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_notifications.exceptions import RepositoryError
from crm_notifications.models.notification import UserNotification
from crm_notifications.models.user import User
from crm_notifications.models.user_settings import UserSettings
from crm_notifications.schemas.notification import (
    DeliveryStatus,
    NotificationCreate,
    NotificationResponse,
)
from crm_notifications.schemas.notification_preferences import NotificationPreferences
from crm_notifications.services.preferences import accepts_type

logger = logging.getLogger(__name__)

Announce = Callable[[Dict[str, Any]], Any]


class NotificationProducer:
    def __init__(self, db: AsyncSession, announce: Optional[Announce] = None):
        self.db = db
        self._announce = announce

    async def recipient_exists(self, user_id: int) -> bool:
        try:
            result = await self.db.execute(select(User.id).where(User.id == user_id))
        except SQLAlchemyError as exc:
            logger.error("Looking up user_id=%s failed: %s", user_id, type(exc).__name__)
            raise RepositoryError("create") from exc
        return result.scalar_one_or_none() is not None

    async def _recipient_preferences(self, user_id: int) -> Optional[NotificationPreferences]:
        try:
            result = await self.db.execute(select(UserSettings).where(UserSettings.user_id == user_id))
        except SQLAlchemyError as exc:
            logger.error("Loading preferences for user_id=%s failed: %s", user_id, type(exc).__name__)
            raise RepositoryError("create") from exc
        row = result.scalar_one_or_none()
        if row is None or not row.notification_preferences:
            return None
        return NotificationPreferences.model_validate(row.notification_preferences)

    async def create(self, user_id: int, data: NotificationCreate) -> Optional[NotificationResponse]:
        """Insert a notification for ``user_id``.

        Returns None, without writing, when the recipient has switched this
        notification type off.
        """
        preferences = await self._recipient_preferences(user_id)
        if not accepts_type(preferences, data.type):
            logger.info("Skipping %s notification for user_id=%s: type disabled", data.type.value, user_id)
            return None

        notification = UserNotification(
            user_id=user_id,
            type=data.type.value,
            title=data.title,
            content=data.content,
            priority=data.priority.value,
            entity_type=data.entity_type.value if data.entity_type else None,
            entity_id=data.entity_id,
            action_url=data.action_url,
            action_text=data.action_text,
            extra_data=data.metadata or {},
            expires_at=data.expires_at,
            delivery_status=DeliveryStatus.DELIVERED.value,
        )
        self.db.add(notification)
        try:
            await self.db.commit()
            await self.db.refresh(notification)
        except SQLAlchemyError as exc:
            logger.error("Creating notification for user_id=%s failed: %s", user_id, type(exc).__name__)
            await self.db.rollback()
            raise RepositoryError("create") from exc

        created = NotificationResponse.model_validate(notification)
        logger.info("Created %s notification %s for user_id=%s", created.type.value, created.id, user_id)

        if self._announce is not None:
            try:
                self._announce(created.model_dump(mode="json"))
            except Exception:
                logger.exception("Announcing notification %s failed", created.id)
        return created
