"""Notification Repository - per-user queries and commands over notifications.

Every operation is scoped to the current user. Backend failures surface as
``RepositoryError``; nothing here substitutes empty or placeholder data.
Writes commit immediately and never wait for the realtime channel.
"""

from collections.abc import Mapping
from typing import Any, List, Optional, Union
import logging
import uuid

from sqlalchemy import select, func, and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_notifications.exceptions import NotAuthenticatedError, RepositoryError
from crm_notifications.models.notification import UserNotification
from crm_notifications.models.user_settings import UserSettings
from crm_notifications.schemas.notification import NotificationFilters, NotificationResponse
from crm_notifications.schemas.notification_preferences import (
    NotificationPreferences,
    NotificationPreferencesUpdate,
)
from crm_notifications.services.preferences import merge_preferences
from crm_notifications.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20


def _parse_id(notification_id: Union[str, uuid.UUID]) -> Optional[uuid.UUID]:
    if isinstance(notification_id, uuid.UUID):
        return notification_id
    try:
        return uuid.UUID(str(notification_id))
    except ValueError:
        return None


class NotificationRepository:
    """CRUD and query operations over one user's notifications."""

    def __init__(self, db: AsyncSession, user_id: Optional[int]):
        self.db = db
        self.user_id = user_id

    def _require_user(self, operation: str) -> int:
        if self.user_id is None:
            raise NotAuthenticatedError(operation)
        return self.user_id

    async def _fail(self, operation: str, exc: SQLAlchemyError) -> RepositoryError:
        logger.error("Notification %s failed: %s", operation, type(exc).__name__)
        try:
            await self.db.rollback()
        except SQLAlchemyError:
            logger.warning("Rollback after failed %s also failed", operation)
        return RepositoryError(operation)

    # Queries

    async def list(
        self,
        filters: Optional[NotificationFilters] = None,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
    ) -> list[NotificationResponse]:
        """Newest first; every set filter must hold."""
        user_id = self._require_user("list")
        query = select(UserNotification).where(UserNotification.user_id == user_id)

        if filters is not None:
            conditions = self._filter_conditions(filters)
            if conditions:
                query = query.where(and_(*conditions))

        query = (
            query.order_by(UserNotification.created_at.desc(), UserNotification.id.desc())
            .offset(offset)
            .limit(limit)
        )

        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as exc:
            raise await self._fail("list", exc) from exc
        return [NotificationResponse.model_validate(row) for row in result.scalars().all()]

    @staticmethod
    def _filter_conditions(filters: NotificationFilters) -> List[Any]:
        conditions = []
        if filters.type is not None:
            conditions.append(UserNotification.type == filters.type.value)
        if filters.is_read is not None:
            conditions.append(UserNotification.is_read == filters.is_read)
        if filters.is_dismissed is not None:
            conditions.append(UserNotification.is_dismissed == filters.is_dismissed)
        if filters.priority is not None:
            conditions.append(UserNotification.priority == filters.priority.value)
        if filters.entity_type is not None:
            conditions.append(UserNotification.entity_type == filters.entity_type.value)
        if filters.entity_id is not None:
            conditions.append(UserNotification.entity_id == filters.entity_id)
        if filters.from_date is not None:
            conditions.append(UserNotification.created_at >= filters.from_date)
        if filters.to_date is not None:
            conditions.append(UserNotification.created_at <= filters.to_date)
        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(
                or_(UserNotification.title.ilike(pattern), UserNotification.content.ilike(pattern))
            )
        if filters.exclude_expired:
            conditions.append(
                or_(UserNotification.expires_at.is_(None), UserNotification.expires_at > utcnow())
            )
        return conditions

    async def get(self, notification_id: Union[str, uuid.UUID]) -> Optional[NotificationResponse]:
        user_id = self._require_user("get")
        notif_uuid = _parse_id(notification_id)
        if notif_uuid is None:
            return None
        try:
            result = await self.db.execute(
                select(UserNotification).where(
                    and_(UserNotification.id == notif_uuid, UserNotification.user_id == user_id)
                )
            )
        except SQLAlchemyError as exc:
            raise await self._fail("get", exc) from exc
        row = result.scalar_one_or_none()
        return NotificationResponse.model_validate(row) if row is not None else None

    async def unread_count(self) -> int:
        """Count of notifications that are neither read nor dismissed."""
        user_id = self._require_user("unread_count")
        try:
            result = await self.db.execute(
                select(func.count(UserNotification.id)).where(
                    and_(
                        UserNotification.user_id == user_id,
                        UserNotification.is_read == False,  # noqa: E712
                        UserNotification.is_dismissed == False,  # noqa: E712
                    )
                )
            )
        except SQLAlchemyError as exc:
            raise await self._fail("unread_count", exc) from exc
        return result.scalar() or 0

    async def total_count(self) -> int:
        user_id = self._require_user("total_count")
        try:
            result = await self.db.execute(
                select(func.count(UserNotification.id)).where(UserNotification.user_id == user_id)
            )
        except SQLAlchemyError as exc:
            raise await self._fail("total_count", exc) from exc
        return result.scalar() or 0

    # Commands

    async def _transition(self, operation: str, flag, stamp, notification_id=None) -> int:
        """Flip ``flag`` to true where it is still false; returns rows changed."""
        user_id = self._require_user(operation)
        conditions = [UserNotification.user_id == user_id, flag == False]  # noqa: E712
        if notification_id is not None:
            notif_uuid = _parse_id(notification_id)
            if notif_uuid is None:
                return 0
            conditions.append(UserNotification.id == notif_uuid)

        statement = (
            update(UserNotification)
            .where(and_(*conditions))
            .values({flag: True, stamp: utcnow()})
            .returning(UserNotification.id)
        )
        try:
            result = await self.db.execute(statement)
            changed = len(result.fetchall())
            await self.db.commit()
        except SQLAlchemyError as exc:
            raise await self._fail(operation, exc) from exc
        return changed

    async def mark_read(self, notification_id: Union[str, uuid.UUID]) -> bool:
        """True when this call moved the notification to read.

        Already-read or unknown ids return False without raising.
        """
        changed = await self._transition(
            "mark_read", UserNotification.is_read, UserNotification.read_at, notification_id
        )
        return changed > 0

    async def mark_all_read(self) -> int:
        return await self._transition("mark_all_read", UserNotification.is_read, UserNotification.read_at)

    async def dismiss(self, notification_id: Union[str, uuid.UUID]) -> bool:
        """Same contract as ``mark_read`` for the dismissed flag."""
        changed = await self._transition(
            "dismiss", UserNotification.is_dismissed, UserNotification.dismissed_at, notification_id
        )
        return changed > 0

    async def dismiss_all(self) -> int:
        return await self._transition(
            "dismiss_all", UserNotification.is_dismissed, UserNotification.dismissed_at
        )

    # Preferences

    async def _load_settings(self, operation: str) -> Optional[UserSettings]:
        user_id = self._require_user(operation)
        try:
            result = await self.db.execute(select(UserSettings).where(UserSettings.user_id == user_id))
        except SQLAlchemyError as exc:
            raise await self._fail(operation, exc) from exc
        return result.scalar_one_or_none()

    async def get_preferences(self) -> Optional[NotificationPreferences]:
        """Stored preferences, or None when the caller should apply defaults."""
        row = await self._load_settings("get_preferences")
        if row is None or not row.notification_preferences:
            return None
        return NotificationPreferences.model_validate(row.notification_preferences)

    async def update_preferences(
        self, partial: Union[NotificationPreferencesUpdate, Mapping[str, Any]]
    ) -> bool:
        """Merge ``partial`` into the stored document, creating it if absent."""
        if not isinstance(partial, NotificationPreferencesUpdate):
            partial = NotificationPreferencesUpdate.model_validate(dict(partial))

        row = await self._load_settings("update_preferences")
        current = row.notification_preferences if row is not None else None
        merged = merge_preferences(current, partial.to_patch())

        if row is None:
            row = UserSettings(user_id=self.user_id, notification_preferences=merged)
            self.db.add(row)
        else:
            row.notification_preferences = merged

        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            raise await self._fail("update_preferences", exc) from exc
        return True
