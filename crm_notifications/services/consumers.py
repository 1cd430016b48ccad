"""
Notification consumers: the bell dropdown, the notification center and the
toast stack.

Each consumer registers one listener with the shared ``RealtimeDispatcher``,
renders from the repository, and writes read/dismiss changes back through the
repository. Local state is patched only after a write succeeds, and every
patch is idempotent so that a late or duplicate realtime echo of the same row
converges to the same view.

Every continuation that resumes after an ``await`` checks ``active`` first; a
consumer that was stopped while a request was in flight never mutates its
state afterwards.
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional
import logging

from crm_notifications.config import settings
from crm_notifications.exceptions import RepositoryError
from crm_notifications.schemas.notification import NotificationFilters, NotificationResponse
from crm_notifications.schemas.notification_preferences import NotificationPreferences
from crm_notifications.services.notification_repository import NotificationRepository
from crm_notifications.services.preferences import (
    resolve_preferences,
    should_alert,
    should_play_sound,
)
from crm_notifications.services.realtime_dispatcher import RealtimeDispatcher, Unsubscribe
from crm_notifications.services.toast_queue import ToastQueue

logger = logging.getLogger(__name__)

BELL_PAGE_SIZE = settings.BELL_PAGE_SIZE
CENTER_PAGE_SIZE = settings.CENTER_PAGE_SIZE

SoundHook = Callable[[NotificationResponse], None]


def merge_flags(local: NotificationResponse, incoming: NotificationResponse) -> NotificationResponse:
    """Combine two copies of one row. Lifecycle flags only ever move to true."""
    return local.model_copy(
        update={
            "is_read": local.is_read or incoming.is_read,
            "is_dismissed": local.is_dismissed or incoming.is_dismissed,
        }
    )


class NotificationConsumer(ABC):
    """Start/stop lifecycle and error state shared by every consumer."""

    def __init__(self, repository: NotificationRepository, dispatcher: RealtimeDispatcher):
        self.repository = repository
        self.dispatcher = dispatcher
        self.preferences: NotificationPreferences = resolve_preferences(None)
        self.error: Optional[RepositoryError] = None
        self.loading = False
        self.active = False
        self._unsubscribe: Optional[Unsubscribe] = None

    async def start(self) -> None:
        if self.active:
            return
        self.active = True
        unsubscribe = await self.dispatcher.subscribe(self._on_notification)
        if not self.active:
            # Stopped while the subscription was being set up
            await unsubscribe()
            return
        self._unsubscribe = unsubscribe
        await self.refresh()

    async def stop(self) -> None:
        self.active = False
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            await unsubscribe()

    async def refresh(self) -> None:
        self.loading = True
        try:
            await self._load()
        except RepositoryError as e:
            logger.warning("%s failed to load: %s", type(self).__name__, e)
            if self.active:
                self.error = e
        else:
            if self.active:
                self.error = None
        finally:
            self.loading = False

    async def reload_preferences(self) -> None:
        try:
            stored = await self.repository.get_preferences()
        except RepositoryError as e:
            logger.warning("Could not load notification preferences, using defaults: %s", e)
            stored = None
        if self.active:
            self.preferences = resolve_preferences(stored)

    @abstractmethod
    async def _load(self) -> None: ...

    @abstractmethod
    def _on_notification(self, notification: NotificationResponse) -> None: ...

    async def _write(self, operation, *args):
        """Run a repository write, recording failures instead of raising."""
        try:
            return await operation(*args)
        except RepositoryError as e:
            logger.warning("%s: %s failed: %s", type(self).__name__, e.operation, e.detail)
            if self.active:
                self.error = e
            return None


class NotificationListConsumer(NotificationConsumer):
    """A consumer that keeps a newest-first list of rows."""

    page_size = 20

    def __init__(self, repository: NotificationRepository, dispatcher: RealtimeDispatcher):
        super().__init__(repository, dispatcher)
        self.items: List[NotificationResponse] = []

    def find(self, notification_id: str) -> Optional[NotificationResponse]:
        for item in self.items:
            if item.id == notification_id:
                return item
        return None

    def _replace(self, notification: NotificationResponse) -> None:
        self.items = [notification if item.id == notification.id else item for item in self.items]

    def _drop(self, notification_id: str) -> None:
        self.items = [item for item in self.items if item.id != notification_id]

    def _prepend(self, notification: NotificationResponse, limit: Optional[int] = None) -> bool:
        """Insert a realtime row; False when it was a duplicate echo."""
        existing = self.find(notification.id)
        if existing is not None:
            self._replace(merge_flags(existing, notification))
            return False
        self.items = [notification] + self.items
        if limit is not None:
            self.items = self.items[:limit]
        return True


class NotificationBell(NotificationListConsumer):
    """Header dropdown: latest non-dismissed rows and the unread badge."""

    page_size = BELL_PAGE_SIZE

    def __init__(
        self,
        repository: NotificationRepository,
        dispatcher: RealtimeDispatcher,
        on_sound: Optional[SoundHook] = None,
        page_size: int = BELL_PAGE_SIZE,
    ):
        super().__init__(repository, dispatcher)
        self.page_size = page_size
        self.unread_count = 0
        self._on_sound = on_sound

    async def _load(self) -> None:
        items = await self.repository.list(NotificationFilters(is_dismissed=False), limit=self.page_size)
        unread = await self.repository.unread_count()
        stored = await self.repository.get_preferences()
        if not self.active:
            return
        self.items = items
        self.unread_count = unread
        self.preferences = resolve_preferences(stored)

    def _on_notification(self, notification: NotificationResponse) -> None:
        if not self.active or notification.is_dismissed:
            return
        if not self._prepend(notification, limit=self.page_size):
            return
        if notification.is_unread:
            self.unread_count += 1
        if self._on_sound is not None and should_play_sound(self.preferences):
            self._on_sound(notification)

    async def mark_read(self, notification_id: str) -> bool:
        changed = await self._write(self.repository.mark_read, notification_id)
        if changed is None or not self.active:
            return False
        item = self.find(notification_id)
        if item is not None:
            if item.is_unread:
                self._decrement()
            self._replace(item.model_copy(update={"is_read": True}))
        elif changed:
            await self._recount()
        return changed

    async def dismiss(self, notification_id: str) -> bool:
        changed = await self._write(self.repository.dismiss, notification_id)
        if changed is None or not self.active:
            return False
        item = self.find(notification_id)
        if item is not None:
            if item.is_unread:
                self._decrement()
            self._drop(notification_id)
        elif changed:
            await self._recount()
        return changed

    async def mark_all_read(self) -> int:
        count = await self._write(self.repository.mark_all_read)
        if count is None or not self.active:
            return 0
        self.items = [item.model_copy(update={"is_read": True}) for item in self.items]
        self.unread_count = 0
        return count

    def _decrement(self) -> None:
        self.unread_count = max(0, self.unread_count - 1)

    async def _recount(self) -> None:
        """Re-read the counter after changing a row outside the loaded page."""
        count = await self._write(self.repository.unread_count)
        if count is not None and self.active:
            self.unread_count = count


class NotificationCenter(NotificationListConsumer):
    """Full-page list with filters, client-side search and paging."""

    page_size = CENTER_PAGE_SIZE

    def __init__(
        self,
        repository: NotificationRepository,
        dispatcher: RealtimeDispatcher,
        filters: Optional[NotificationFilters] = None,
        page_size: int = CENTER_PAGE_SIZE,
    ):
        super().__init__(repository, dispatcher)
        self.page_size = page_size
        self.filters = filters or NotificationFilters()
        self.search = ""
        self.has_more = False

    @property
    def visible_items(self) -> List[NotificationResponse]:
        """Loaded rows narrowed by the search box."""
        if not self.search:
            return list(self.items)
        query = NotificationFilters(search=self.search)
        return [item for item in self.items if query.matches(item)]

    async def set_filters(self, filters: NotificationFilters) -> None:
        self.filters = filters
        await self.refresh()

    async def _load(self) -> None:
        items = await self.repository.list(self.filters, limit=self.page_size)
        if not self.active:
            return
        self.items = items
        self.has_more = len(items) == self.page_size

    async def load_more(self) -> None:
        if not self.has_more:
            return
        try:
            page = await self.repository.list(self.filters, limit=self.page_size, offset=len(self.items))
        except RepositoryError as e:
            logger.warning("NotificationCenter failed to load more: %s", e)
            if self.active:
                self.error = e
            return
        if not self.active:
            return
        known = {item.id for item in self.items}
        self.items = self.items + [item for item in page if item.id not in known]
        self.has_more = len(page) == self.page_size

    def _on_notification(self, notification: NotificationResponse) -> None:
        if not self.active or not self.filters.matches(notification):
            return
        self._prepend(notification)

    async def mark_read(self, notification_id: str) -> bool:
        changed = await self._write(self.repository.mark_read, notification_id)
        if changed is None or not self.active:
            return False
        self._patch(notification_id, is_read=True)
        return changed

    async def dismiss(self, notification_id: str) -> bool:
        changed = await self._write(self.repository.dismiss, notification_id)
        if changed is None or not self.active:
            return False
        self._patch(notification_id, is_dismissed=True)
        return changed

    async def mark_all_read(self) -> int:
        count = await self._write(self.repository.mark_all_read)
        if count is None or not self.active:
            return 0
        for item in list(self.items):
            self._patch(item.id, is_read=True)
        return count

    async def dismiss_all(self) -> int:
        count = await self._write(self.repository.dismiss_all)
        if count is None or not self.active:
            return 0
        for item in list(self.items):
            self._patch(item.id, is_dismissed=True)
        return count

    def _patch(self, notification_id: str, **flags) -> None:
        """Apply ``flags`` to a loaded row, dropping it if it no longer matches the filters."""
        item = self.find(notification_id)
        if item is None:
            return
        patched = item.model_copy(update=flags)
        if self.filters.matches(patched):
            self._replace(patched)
        else:
            self._drop(notification_id)


class ToastStack(NotificationConsumer):
    """Surfaces realtime notifications as toasts."""

    def __init__(
        self,
        repository: NotificationRepository,
        dispatcher: RealtimeDispatcher,
        on_sound: Optional[SoundHook] = None,
        on_navigate: Optional[Callable[[str], None]] = None,
        auto_close_ms: int = settings.TOAST_AUTO_CLOSE_MS,
        exit_grace_ms: int = settings.TOAST_EXIT_GRACE_MS,
        max_visible: int = settings.TOAST_MAX_VISIBLE,
    ):
        super().__init__(repository, dispatcher)
        self._on_sound = on_sound
        self._queue_options = dict(
            mark_read=self.repository.mark_read,
            on_navigate=on_navigate,
            auto_close_ms=auto_close_ms,
            exit_grace_ms=exit_grace_ms,
            max_visible=max_visible,
        )
        self.queue = ToastQueue(**self._queue_options)

    async def start(self) -> None:
        # A stopped stack closed its queue; a restart gets a fresh one
        if not self.active and self.queue.closed:
            self.queue = ToastQueue(**self._queue_options)
        await super().start()

    async def _load(self) -> None:
        stored = await self.repository.get_preferences()
        if self.active:
            self.preferences = resolve_preferences(stored)

    def _on_notification(self, notification: NotificationResponse) -> None:
        if not self.active or not should_alert(self.preferences, notification):
            return
        if self.queue.push(notification) is None:
            return
        if self._on_sound is not None and should_play_sound(self.preferences):
            self._on_sound(notification)

    def dismiss(self, toast_id: str) -> None:
        self.queue.dismiss(toast_id)

    async def activate(self, toast_id: str) -> None:
        await self.queue.activate(toast_id)

    async def stop(self) -> None:
        await super().stop()
        self.queue.close()
