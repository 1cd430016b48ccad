"""
WebSocket Endpoint

Streams the current user's new notifications to the browser.
Supports:
- Authentication via JWT token query parameter
- Ping/pong heartbeat
- Acknowledging notifications (marks them read)
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from typing import Optional
import asyncio
import contextlib
import logging
import json

from crm_notifications.api.deps import ConnectionManager, get_current_user_ws
from crm_notifications.exceptions import RepositoryError
from crm_notifications.services.notification_repository import NotificationRepository
from crm_notifications.utils.timeutils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


async def _pump(websocket: WebSocket, outbox: "asyncio.Queue[dict]") -> None:
    """Single writer for the socket, so messages go out in queue order."""
    while True:
        message = await outbox.get()
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.info("Stopped sending to closed WebSocket: %s", type(e).__name__)
            return


async def _acknowledge(session_factory, user_id: int, ids) -> dict:
    acked = []
    async with session_factory() as db:
        repository = NotificationRepository(db, user_id)
        for notification_id in ids:
            if await repository.mark_read(str(notification_id)):
                acked.append(str(notification_id))
    return {"type": "acked", "ids": acked}


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None, description="JWT access token"),
):
    """
    WebSocket endpoint for realtime notifications.

    Connection URL: ws://host/api/v2/notifications/ws?token=<jwt_token>

    Message Protocol:
    - Client -> Server:
        - {"type": "ping"} - Heartbeat ping
        - {"type": "ack", "ids": ["<uuid>", ...]} - Mark notifications read

    - Server -> Client:
        - {"type": "connected", "user_id": 123} - Connection confirmation
        - {"type": "pong", "timestamp": "..."} - Heartbeat response
        - {"type": "notification.created", "data": {...}, "timestamp": "..."}
        - {"type": "acked", "ids": [...]} - Ids this ack moved to read
        - {"type": "error", "message": "..."} - Error message
    """
    session_factory = websocket.app.state.session_factory
    user = await get_current_user_ws(token, session_factory)

    if not user:
        logger.warning("WebSocket connection rejected: invalid token")
        await websocket.close(code=4001, reason="Unauthorized")
        return

    manager: ConnectionManager = websocket.app.state.connection_manager
    outbox = await manager.connect(websocket, user.id)
    sender = asyncio.create_task(_pump(websocket, outbox))

    try:
        outbox.put_nowait({"type": "connected", "user_id": user.id, "timestamp": utcnow().isoformat()})

        while True:
            try:
                data = await websocket.receive_json()
            except json.JSONDecodeError:
                outbox.put_nowait({"type": "error", "message": "Invalid JSON format"})
                continue

            message_type = data.get("type") if isinstance(data, dict) else None

            if message_type == "ping":
                manager.update_heartbeat(websocket)
                outbox.put_nowait({"type": "pong", "timestamp": utcnow().isoformat()})

            elif message_type == "ack":
                ids = data.get("ids", [])
                if not isinstance(ids, list):
                    outbox.put_nowait({"type": "error", "message": "ids must be a list"})
                    continue
                try:
                    outbox.put_nowait(await _acknowledge(session_factory, user.id, ids))
                except RepositoryError as e:
                    logger.warning("Acknowledging notifications failed for user %s: %s", user.id, e)
                    outbox.put_nowait({"type": "error", "message": "Could not acknowledge notifications"})

            else:
                outbox.put_nowait({"type": "error", "message": f"Unknown message type: {message_type}"})

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected: user_id=%s", user.id)
    finally:
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender
        await manager.disconnect(websocket)


@router.get("/ws/stats")
async def get_websocket_stats(manager: ConnectionManager):
    """Connection counts for monitoring."""
    return manager.get_connection_stats()
