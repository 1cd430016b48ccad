"""
Tests for the bell, notification center and toast stack consumers.

Most tests drive the consumers through an in-memory repository; the last
class runs the full path (producer -> feed -> dispatcher -> consumers)
against SQLite.
"""

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional
from unittest.mock import Mock, patch

import pytest
import pytest_asyncio

from crm_notifications.exceptions import RepositoryError
from crm_notifications.schemas.notification import (
    NotificationCreate,
    NotificationFilters,
    NotificationResponse,
    NotificationType,
)
from crm_notifications.schemas.notification_preferences import NotificationPreferences, QuietHours
from crm_notifications.services.consumers import (
    NotificationBell,
    NotificationCenter,
    NotificationConsumer,
    ToastStack,
)
from crm_notifications.services.event_sources import InMemoryEventSource
from crm_notifications.services.notification_producer import NotificationProducer
from crm_notifications.services.notification_repository import NotificationRepository
from crm_notifications.services.realtime_dispatcher import RealtimeDispatcher
from crm_notifications.services.toast_queue import ToastState
from tests.factories import NotificationFactory

USER_ID = 3


class InMemoryRepository:
    """Just enough of NotificationRepository for consumer tests."""

    def __init__(self, rows: Optional[List[dict]] = None, preferences: Optional[NotificationPreferences] = None):
        self.rows: Dict[str, NotificationResponse] = {}
        for row in rows or []:
            self.add(row)
        self.preferences = preferences
        self.fail = False
        self.gate: Optional[asyncio.Event] = None

    def add(self, row: dict) -> NotificationResponse:
        notification = NotificationResponse.model_validate(row)
        self.rows[notification.id] = notification
        return notification

    async def _check(self, operation):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RepositoryError(operation)

    async def list(self, filters=None, limit=20, offset=0):
        await self._check("list")
        filters = filters or NotificationFilters()
        rows = sorted(self.rows.values(), key=lambda n: n.created_at, reverse=True)
        return [n for n in rows if filters.matches(n)][offset : offset + limit]

    async def unread_count(self):
        await self._check("unread_count")
        return sum(1 for n in self.rows.values() if n.is_unread)

    async def get_preferences(self):
        await self._check("get_preferences")
        return self.preferences

    async def _flip(self, operation, notification_id, field):
        await self._check(operation)
        row = self.rows.get(notification_id)
        if row is None or getattr(row, field):
            return False
        self.rows[notification_id] = row.model_copy(update={field: True})
        return True

    async def mark_read(self, notification_id):
        return await self._flip("mark_read", notification_id, "is_read")

    async def dismiss(self, notification_id):
        return await self._flip("dismiss", notification_id, "is_dismissed")

    async def mark_all_read(self):
        return sum([await self.mark_read(i) for i in list(self.rows)])

    async def dismiss_all(self):
        return sum([await self.dismiss(i) for i in list(self.rows)])


def event(**overrides) -> dict:
    return NotificationFactory(user_id=USER_ID, **overrides)


@pytest.fixture
def source():
    return InMemoryEventSource()


@pytest.fixture
def dispatcher(source):
    return RealtimeDispatcher(source, identity=lambda: USER_ID)


class TestConsumerBase:
    def test_base_consumer_is_abstract(self, dispatcher):
        with pytest.raises(TypeError):
            NotificationConsumer(InMemoryRepository(), dispatcher)

    def test_consumers_exported_from_services(self):
        from crm_notifications import services

        assert services.NotificationBell is NotificationBell
        assert services.ToastStack is ToastStack


class TestBell:
    @pytest.mark.asyncio
    async def test_loads_non_dismissed_and_unread_count(self, dispatcher):
        repository = InMemoryRepository(
            [event(), event(is_read=True), event(is_dismissed=True)]
        )
        bell = NotificationBell(repository, dispatcher)

        await bell.start()

        assert len(bell.items) == 2
        assert bell.unread_count == 1
        await bell.stop()

    @pytest.mark.asyncio
    async def test_realtime_event_increments_once_and_plays_sound(self, dispatcher, source):
        sound = Mock()
        bell = NotificationBell(InMemoryRepository(), dispatcher, on_sound=sound)
        await bell.start()

        record = event()
        source.publish(record)
        source.publish(record)

        assert bell.unread_count == 1
        assert [n.id for n in bell.items] == [record["id"]]
        sound.assert_called_once()
        await bell.stop()

    @pytest.mark.asyncio
    async def test_no_sound_when_disabled(self, dispatcher, source):
        sound = Mock()
        repository = InMemoryRepository(preferences=NotificationPreferences(sound_enabled=False))
        bell = NotificationBell(repository, dispatcher, on_sound=sound)
        await bell.start()

        source.publish(event())

        sound.assert_not_called()
        await bell.stop()

    @pytest.mark.asyncio
    async def test_keeps_only_page_size_items(self, dispatcher, source):
        bell = NotificationBell(InMemoryRepository(), dispatcher, page_size=10)
        await bell.start()

        for _ in range(12):
            source.publish(event())

        assert len(bell.items) == 10
        assert bell.unread_count == 12
        await bell.stop()

    @pytest.mark.asyncio
    async def test_mark_read_converges_with_late_echo(self, dispatcher, source):
        record = event()
        repository = InMemoryRepository([record])
        bell = NotificationBell(repository, dispatcher)
        await bell.start()

        assert await bell.mark_read(record["id"]) is True
        assert await bell.mark_read(record["id"]) is False
        # Stale echo of the row from before it was read
        source.publish(record)

        assert bell.unread_count == 0
        assert bell.find(record["id"]).is_read is True

    @pytest.mark.asyncio
    async def test_dismiss_removes_row(self, dispatcher):
        record = event()
        bell = NotificationBell(InMemoryRepository([record]), dispatcher)
        await bell.start()

        await bell.dismiss(record["id"])

        assert bell.items == []
        assert bell.unread_count == 0

    @pytest.mark.asyncio
    async def test_mark_all_read(self, dispatcher):
        bell = NotificationBell(InMemoryRepository([event(), event()]), dispatcher)
        await bell.start()

        assert await bell.mark_all_read() == 2
        assert bell.unread_count == 0
        assert all(n.is_read for n in bell.items)

    @pytest.mark.asyncio
    async def test_failed_write_keeps_state_and_records_error(self, dispatcher):
        record = event()
        repository = InMemoryRepository([record])
        bell = NotificationBell(repository, dispatcher)
        await bell.start()
        repository.fail = True

        assert await bell.mark_read(record["id"]) is False

        assert bell.unread_count == 1
        assert isinstance(bell.error, RepositoryError)

    @pytest.mark.asyncio
    async def test_failed_load_sets_error_without_placeholder_rows(self, dispatcher):
        repository = InMemoryRepository([event()])
        repository.fail = True
        bell = NotificationBell(repository, dispatcher)

        await bell.start()

        assert bell.items == []
        assert bell.error is not None
        assert bell.loading is False

    @pytest.mark.asyncio
    async def test_stop_during_load_discards_result(self, dispatcher):
        repository = InMemoryRepository([event()])
        repository.gate = asyncio.Event()
        bell = NotificationBell(repository, dispatcher)

        starting = asyncio.create_task(bell.start())
        await asyncio.sleep(0)
        await bell.stop()
        repository.gate.set()
        await starting

        assert bell.items == []
        assert bell.unread_count == 0
        assert dispatcher.listener_count == 0

    @pytest.mark.asyncio
    async def test_no_events_after_stop(self, dispatcher, source):
        bell = NotificationBell(InMemoryRepository(), dispatcher)
        await bell.start()
        await bell.stop()

        source.publish(event())

        assert bell.items == []
        assert source.active_subscriptions == 0

    @pytest.mark.asyncio
    async def test_dismiss_outside_loaded_page_updates_count(self, dispatcher):
        rows = [event(), event(), event(), event(is_read=True)]
        repository = InMemoryRepository(rows)
        bell = NotificationBell(repository, dispatcher, page_size=1)
        await bell.start()
        assert bell.unread_count == 3

        loaded = bell.items[0].id
        unread_elsewhere = next(r["id"] for r in rows[:3] if r["id"] != loaded)
        read_elsewhere = rows[3]["id"]

        assert await bell.dismiss(unread_elsewhere) is True
        assert bell.unread_count == 2

        assert await bell.dismiss(read_elsewhere) is True
        assert bell.unread_count == 2
        assert bell.unread_count == await repository.unread_count()
        await bell.stop()


class TestCenter:
    @pytest.mark.asyncio
    async def test_realtime_rows_respect_filters(self, dispatcher, source):
        center = NotificationCenter(
            InMemoryRepository(), dispatcher, filters=NotificationFilters(type=NotificationType.MENTION)
        )
        await center.start()

        source.publish(event(type="system"))
        mention = event(type="mention")
        source.publish(mention)

        assert [n.id for n in center.items] == [mention["id"]]
        await center.stop()

    @pytest.mark.asyncio
    async def test_client_side_search(self, dispatcher):
        repository = InMemoryRepository(
            [event(title="Acme renewal"), event(title="Globex intro", content="Acme referral")]
            + [event(title="Initech")]
        )
        center = NotificationCenter(repository, dispatcher)
        await center.start()

        center.search = "acme"

        assert len(center.items) == 3
        assert {n.title for n in center.visible_items} == {"Acme renewal", "Globex intro"}
        await center.stop()

    @pytest.mark.asyncio
    async def test_paging(self, dispatcher):
        repository = InMemoryRepository([event() for _ in range(5)])
        center = NotificationCenter(repository, dispatcher, page_size=2)
        await center.start()

        assert center.has_more is True
        await center.load_more()
        await center.load_more()

        assert len(center.items) == 5
        assert center.has_more is False
        await center.stop()

    @pytest.mark.asyncio
    async def test_dismiss_drops_row_from_undismissed_view(self, dispatcher):
        keep, drop = event(), event()
        center = NotificationCenter(
            InMemoryRepository([keep, drop]), dispatcher, filters=NotificationFilters(is_dismissed=False)
        )
        await center.start()

        await center.dismiss(drop["id"])

        assert [n.id for n in center.items] == [keep["id"]]
        await center.stop()

    @pytest.mark.asyncio
    async def test_set_filters_reloads(self, dispatcher):
        repository = InMemoryRepository([event(is_read=True), event()])
        center = NotificationCenter(repository, dispatcher)
        await center.start()

        await center.set_filters(NotificationFilters(is_read=False))

        assert len(center.items) == 1
        await center.stop()


class TestToastStack:
    @pytest.mark.asyncio
    async def test_surfaces_enabled_types(self, dispatcher, source):
        repository = InMemoryRepository(
            preferences=NotificationPreferences.model_validate({"notification_types": {"mention": False}})
        )
        stack = ToastStack(repository, dispatcher)
        await stack.start()

        source.publish(event(type="mention"))
        shown = event(type="system")
        source.publish(shown)

        assert [t.id for t in stack.queue.toasts] == [shown["id"]]
        await stack.stop()

    @pytest.mark.asyncio
    async def test_quiet_hours_suppress_toast_and_sound(self, dispatcher, source):
        sound = Mock()
        repository = InMemoryRepository(
            preferences=NotificationPreferences(quiet_hours=QuietHours(enabled=True, start="22:00", end="08:00"))
        )
        stack = ToastStack(repository, dispatcher, on_sound=sound)
        await stack.start()

        late_night = datetime(2026, 3, 10, 23, 30, tzinfo=timezone.utc)
        with patch("crm_notifications.services.preferences.utcnow", return_value=late_night):
            source.publish(event())

        assert stack.queue.toasts == []
        sound.assert_not_called()
        await stack.stop()

    @pytest.mark.asyncio
    async def test_stop_clears_toasts(self, dispatcher, source):
        stack = ToastStack(InMemoryRepository(), dispatcher)
        await stack.start()
        source.publish(event())

        await stack.stop()

        assert stack.queue.toasts == []
        source.publish(event())
        assert stack.queue.toasts == []

    @pytest.mark.asyncio
    async def test_reload_preferences_falls_back_to_defaults(self, dispatcher):
        repository = InMemoryRepository(preferences=NotificationPreferences(sound_enabled=False))
        stack = ToastStack(repository, dispatcher)
        await stack.start()
        repository.fail = True

        await stack.reload_preferences()

        assert stack.preferences.sound_enabled is True
        await stack.stop()

    @pytest.mark.asyncio
    async def test_restart_after_stop_shows_toasts_again(self, dispatcher, source):
        stack = ToastStack(InMemoryRepository(), dispatcher)
        await stack.start()
        await stack.stop()

        await stack.start()
        record = event()
        source.publish(record)

        assert [t.id for t in stack.queue.toasts] == [record["id"]]
        assert stack.queue.toasts[0].state == ToastState.VISIBLE
        await stack.stop()


class TestEndToEnd:
    @pytest_asyncio.fixture
    async def wired(self, test_db, test_user):
        source = InMemoryEventSource()
        dispatcher = RealtimeDispatcher(source, identity=lambda: test_user.id)
        repository = NotificationRepository(test_db, test_user.id)
        producer = NotificationProducer(test_db, announce=source.publish)
        return source, dispatcher, repository, producer

    @pytest.mark.asyncio
    async def test_bell_and_toast_converge_after_dismiss(self, wired, test_user):
        source, dispatcher, repository, producer = wired
        bell = NotificationBell(repository, dispatcher)
        stack = ToastStack(repository, dispatcher)
        await bell.start()
        await stack.start()

        created = await producer.create(
            test_user.id, NotificationCreate(type=NotificationType.MENTION, title="n1", content="hello")
        )

        assert source.opened_count == 1
        assert bell.unread_count == 1
        assert len(stack.queue.toasts) == 1
        assert stack.queue.toasts[0].state == ToastState.VISIBLE

        assert await bell.dismiss(created.id) is True
        await bell.refresh()
        assert bell.unread_count == 0
        assert await repository.unread_count() == 0

        await stack.activate(created.id)
        assert stack.queue.get(created.id).state == ToastState.CLOSING

        await bell.stop()
        await stack.stop()
        assert source.active_subscriptions == 0
