"""
WebSocket Connection Manager

Bridges browser WebSocket connections to per-user realtime dispatchers.
Supports:
- Several connections per user (tabs/devices) sharing one upstream stream
- Per-connection outbound queues so events keep arrival order
- Connection heartbeat tracking and stale connection cleanup
"""

from fastapi import WebSocket
from typing import Any, Dict, Optional, Set
from datetime import datetime
import asyncio
import logging

from crm_notifications.schemas.notification import NotificationResponse
from crm_notifications.services.event_sources import EventSource
from crm_notifications.services.realtime_dispatcher import (
    NotificationListener,
    RealtimeDispatcher,
    Unsubscribe,
)
from crm_notifications.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

NOTIFICATION_CREATED = "notification.created"


def notification_event(notification: NotificationResponse) -> dict:
    return {
        "type": NOTIFICATION_CREATED,
        "data": notification.model_dump(mode="json"),
        "timestamp": utcnow().isoformat(),
    }


class NotificationConnectionManager:
    """
    Tracks WebSocket connections by user_id and owns one RealtimeDispatcher
    per connected user.
    """

    def __init__(self, event_source: EventSource):
        self.event_source = event_source
        self._dispatchers: Dict[int, RealtimeDispatcher] = {}
        # user_id -> open connections
        self._connections: Dict[int, Set[WebSocket]] = {}
        self._websocket_to_user: Dict[WebSocket, int] = {}
        self._unsubscribers: Dict[WebSocket, Unsubscribe] = {}
        self._heartbeats: Dict[WebSocket, datetime] = {}
        self._lock = asyncio.Lock()

    def dispatcher_for(self, user_id: int) -> RealtimeDispatcher:
        dispatcher = self._dispatchers.get(user_id)
        if dispatcher is None:
            dispatcher = RealtimeDispatcher(self.event_source, identity=lambda: user_id)
            self._dispatchers[user_id] = dispatcher
        return dispatcher

    async def subscribe(self, user_id: int, listener: NotificationListener) -> Unsubscribe:
        """Register an in-process listener for ``user_id``'s new notifications."""
        dispatcher = self.dispatcher_for(user_id)
        unsubscribe = await dispatcher.subscribe(listener)

        async def release() -> None:
            await unsubscribe()
            self._prune(user_id)

        return release

    async def connect(self, websocket: WebSocket, user_id: int) -> "asyncio.Queue[dict]":
        """
        Accept a WebSocket connection and start streaming to it.

        Returns the queue the endpoint drains into the socket.
        """
        await websocket.accept()
        outbox: "asyncio.Queue[dict]" = asyncio.Queue()

        async with self._lock:
            self._connections.setdefault(user_id, set()).add(websocket)
            self._websocket_to_user[websocket] = user_id
            self._heartbeats[websocket] = utcnow()

        self._unsubscribers[websocket] = await self.subscribe(
            user_id, lambda notification: outbox.put_nowait(notification_event(notification))
        )

        logger.info(
            "WebSocket connected: user_id=%s, total_connections=%s", user_id, self.total_connections
        )
        return outbox

    async def disconnect(self, websocket: WebSocket) -> None:
        user_id = self._websocket_to_user.pop(websocket, None)
        self._heartbeats.pop(websocket, None)
        unsubscribe = self._unsubscribers.pop(websocket, None)

        if user_id is not None and user_id in self._connections:
            self._connections[user_id].discard(websocket)
            if not self._connections[user_id]:
                del self._connections[user_id]

        if unsubscribe is not None:
            await unsubscribe()

        logger.info(
            "WebSocket disconnected: user_id=%s, total_connections=%s", user_id, self.total_connections
        )

    def _prune(self, user_id: int) -> None:
        dispatcher = self._dispatchers.get(user_id)
        if dispatcher is not None and dispatcher.listener_count == 0:
            del self._dispatchers[user_id]

    def update_heartbeat(self, websocket: WebSocket) -> None:
        self._heartbeats[websocket] = utcnow()

    @property
    def total_connections(self) -> int:
        return len(self._websocket_to_user)

    @property
    def connected_users(self) -> Set[int]:
        return set(self._connections.keys())

    async def check_stale_connections(self, timeout_seconds: int = 120) -> int:
        """
        Close connections that have not sent a ping within ``timeout_seconds``.

        Returns:
            Number of stale connections cleaned up
        """
        now = utcnow()
        async with self._lock:
            stale = [
                websocket
                for websocket, last_heartbeat in self._heartbeats.items()
                if (now - last_heartbeat).total_seconds() > timeout_seconds
            ]

        for websocket in stale:
            try:
                await websocket.close(code=4002, reason="Connection timeout")
            except RuntimeError as e:
                # Already closed by the peer
                logger.debug("Closing stale WebSocket failed: %s", e)
            await self.disconnect(websocket)

        if stale:
            logger.info("Cleaned up %d stale WebSocket connections", len(stale))
        return len(stale)

    async def shutdown(self) -> None:
        """Close every upstream stream. Used on application shutdown."""
        for dispatcher in list(self._dispatchers.values()):
            await dispatcher.shutdown()
        self._dispatchers.clear()
        self._unsubscribers.clear()

    def get_connection_stats(self) -> Dict[str, Any]:
        return {
            "total_connections": self.total_connections,
            "unique_users": len(self._connections),
            "active_streams": sum(1 for d in self._dispatchers.values() if d.is_connected),
        }

    def get_dispatcher(self, user_id: int) -> Optional[RealtimeDispatcher]:
        return self._dispatchers.get(user_id)
