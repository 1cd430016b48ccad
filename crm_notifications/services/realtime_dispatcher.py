"""
Realtime Dispatcher

Keeps exactly one upstream insert stream open for the current user while at
least one in-process listener is registered, and fans each event out to every
listener in registration order.

States:
- IDLE: no upstream stream, no listeners
- ACTIVE: one upstream stream, one or more listeners

A listener registered while the upstream cannot be opened stays registered;
events resume after a later successful ``subscribe`` or ``reconnect``.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional
import asyncio
import itertools
import logging

from pydantic import ValidationError

from crm_notifications.exceptions import SubscriptionError
from crm_notifications.schemas.notification import NotificationResponse
from crm_notifications.services.event_sources import EventSource, Subscription

logger = logging.getLogger(__name__)

NotificationListener = Callable[[NotificationResponse], Any]
IdentityProvider = Callable[[], Optional[int]]
Unsubscribe = Callable[[], Awaitable[None]]


class DispatcherState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"


class RealtimeDispatcher:
    """One upstream subscription, many local listeners."""

    def __init__(self, event_source: EventSource, identity: IdentityProvider):
        self._event_source = event_source
        self._identity = identity
        self._listeners: Dict[int, NotificationListener] = {}
        self._tokens = itertools.count()
        self._subscription: Optional[Subscription] = None
        self._subscribed_user_id: Optional[int] = None
        self._connecting: Optional[asyncio.Task] = None
        # Serializes opening and closing of the upstream stream
        self._lock = asyncio.Lock()

    @property
    def state(self) -> DispatcherState:
        if self._subscription is not None and self._listeners:
            return DispatcherState.ACTIVE
        return DispatcherState.IDLE

    @property
    def is_connected(self) -> bool:
        return self._subscription is not None

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    async def subscribe(self, listener: NotificationListener) -> Unsubscribe:
        """Register ``listener`` and make sure the upstream stream is open.

        The returned coroutine function removes only this listener. After it
        has been called the listener is never invoked again.
        """
        token = next(self._tokens)
        self._listeners[token] = listener

        async def unsubscribe() -> None:
            if self._listeners.pop(token, None) is None:
                return
            if not self._listeners:
                await self._release()

        await self._ensure_connected()
        return unsubscribe

    async def reconnect(self) -> bool:
        """Retry opening the upstream after an earlier failure."""
        if self._listeners:
            await self._ensure_connected()
        return self.is_connected

    async def shutdown(self) -> None:
        """Drop every listener and close the upstream stream."""
        self._listeners.clear()
        if self._connecting is not None:
            await asyncio.shield(self._connecting)
        await self._release()

    async def _ensure_connected(self) -> None:
        if self._subscription is not None:
            return
        # Single flight: concurrent callers share one connection attempt
        if self._connecting is None:
            self._connecting = asyncio.ensure_future(self._connect())
        await asyncio.shield(self._connecting)

    async def _connect(self) -> None:
        try:
            async with self._lock:
                if self._subscription is not None or not self._listeners:
                    return
                user_id = self._identity()
                if user_id is None:
                    logger.warning("No authenticated user; realtime notifications unavailable")
                    return
                try:
                    self._subscription = await self._event_source.open(user_id, self._dispatch)
                except SubscriptionError as e:
                    logger.warning("Realtime notification stream unavailable: %s", e)
                    return
                except Exception:
                    # Listeners stay registered; reconnect() retries
                    logger.warning("Realtime notification stream failed to open", exc_info=True)
                    return
                self._subscribed_user_id = user_id
                logger.info("Realtime notification stream opened for user_id=%s", user_id)
        finally:
            self._connecting = None

    async def _release(self) -> None:
        async with self._lock:
            if self._listeners or self._subscription is None:
                return
            subscription, self._subscription = self._subscription, None
            user_id, self._subscribed_user_id = self._subscribed_user_id, None
            try:
                await subscription.close()
            except SubscriptionError as e:
                logger.warning("Error closing realtime notification stream: %s", e)
            logger.info("Realtime notification stream closed for user_id=%s", user_id)

    def _dispatch(self, record: Mapping[str, Any]) -> None:
        """Fan one upstream insert out to every registered listener."""
        try:
            notification = NotificationResponse.model_validate(record)
        except ValidationError:
            logger.warning("Discarding malformed realtime notification event")
            return

        if notification.user_id != self._subscribed_user_id:
            logger.warning("Discarding realtime notification addressed to another user")
            return

        for token, listener in list(self._listeners.items()):
            # Unsubscribed by an earlier listener during this fan-out
            if token not in self._listeners:
                continue
            try:
                listener(notification)
            except Exception:
                logger.exception("Notification listener %r failed", listener)
