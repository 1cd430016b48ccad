"""Stale WebSocket sweeper.

Closes notification sockets that stopped sending heartbeats, which in turn
releases their dispatcher listeners and, for the last socket of a user, the
upstream insert stream.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from crm_notifications.config import settings
from crm_notifications.services.websocket_manager import NotificationConnectionManager

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler
    if scheduler is None:
        scheduler = AsyncIOScheduler()
    return scheduler


async def sweep_stale_connections(manager: NotificationConnectionManager) -> int:
    """Job body: close sockets idle longer than WEBSOCKET_STALE_SECONDS."""
    closed = await manager.check_stale_connections(settings.WEBSOCKET_STALE_SECONDS)
    if closed:
        logger.info("Stale connection sweep closed %d sockets", closed)
    return closed


def start_connection_sweeper(manager: NotificationConnectionManager) -> None:
    scheduler = get_scheduler()

    scheduler.add_job(
        sweep_stale_connections,
        IntervalTrigger(seconds=settings.WEBSOCKET_SWEEP_INTERVAL_SECONDS),
        args=[manager],
        id="sweep_stale_websockets",
        name="Close stale notification WebSockets",
        replace_existing=True,
    )

    if not scheduler.running:
        scheduler.start()
        logger.info("Connection sweeper started (every %ss)", settings.WEBSOCKET_SWEEP_INTERVAL_SECONDS)


def stop_connection_sweeper() -> None:
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Connection sweeper stopped")
    scheduler = None
