"""
Upstream insert-event streams for the realtime dispatcher.

An event source opens one stream of "notification inserted" events scoped to a
single user and hands each inserted record, as a plain dict, to the callback
it was opened with. Two backends:

- InMemoryEventSource: in-process feed; the producer announces each insert.
- PostgresEventSource: asyncpg LISTEN on the channel fed by the
  ``user_notifications`` insert trigger (see alembic migration 002).
"""

from typing import Any, Callable, Dict, List, Optional, Protocol
import json
import logging

import asyncpg

from crm_notifications.exceptions import SubscriptionError

logger = logging.getLogger(__name__)

InsertCallback = Callable[[Dict[str, Any]], None]


class Subscription(Protocol):
    async def close(self) -> None: ...


class EventSource(Protocol):
    async def open(self, user_id: int, on_insert: InsertCallback) -> Subscription: ...


class InMemorySubscription:
    """Handle returned by ``InMemoryEventSource.open``."""

    def __init__(self, source: "InMemoryEventSource", user_id: int, on_insert: InsertCallback):
        self._source = source
        self.user_id = user_id
        self.on_insert = on_insert
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._source._detach(self)


class InMemoryEventSource:
    """Process-local insert feed, used in single-instance deployments and tests."""

    def __init__(self):
        self._subscriptions: List[InMemorySubscription] = []
        self.opened_count = 0

    async def open(self, user_id: int, on_insert: InsertCallback) -> InMemorySubscription:
        subscription = InMemorySubscription(self, user_id, on_insert)
        self._subscriptions.append(subscription)
        self.opened_count += 1
        logger.debug("In-memory notification stream opened for user_id=%s", user_id)
        return subscription

    def _detach(self, subscription: InMemorySubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
        logger.debug("In-memory notification stream closed for user_id=%s", subscription.user_id)

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    def publish(self, record: Dict[str, Any]) -> int:
        """Announce an inserted row to the streams of its owner.

        Returns the number of streams that received it.
        """
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription.closed or subscription.user_id != record.get("user_id"):
                continue
            subscription.on_insert(dict(record))
            delivered += 1
        return delivered


class PostgresSubscription:
    def __init__(self, connection: "asyncpg.Connection", channel: str, listener):
        self._connection = connection
        self._channel = channel
        self._listener = listener
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self._connection.remove_listener(self._channel, self._listener)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.warning("Failed to remove LISTEN on %s: %s", self._channel, type(e).__name__)
        finally:
            await self._connection.close()


class PostgresEventSource:
    """Dedicated asyncpg connection per stream, LISTENing on ``channel``.

    The trigger publishes every inserted row as JSON; rows owned by other
    users are filtered out here.
    """

    def __init__(self, dsn: str, channel: str = "user_notifications", connect_timeout: float = 10.0):
        self._dsn = dsn
        self._channel = channel
        self._connect_timeout = connect_timeout

    async def open(self, user_id: int, on_insert: InsertCallback) -> PostgresSubscription:
        try:
            connection = await asyncpg.connect(self._dsn, timeout=self._connect_timeout)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, TimeoutError) as e:
            raise SubscriptionError(f"Could not connect for LISTEN: {type(e).__name__}") from e

        def listener(conn, pid, channel, payload):
            record = _decode_payload(payload)
            if record is None or record.get("user_id") != user_id:
                return
            on_insert(record)

        try:
            await connection.add_listener(self._channel, listener)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            await connection.close()
            raise SubscriptionError(f"Could not LISTEN on {self._channel}") from e

        logger.info("Listening on %s for user_id=%s", self._channel, user_id)
        return PostgresSubscription(connection, self._channel, listener)


def _decode_payload(payload: str) -> Optional[Dict[str, Any]]:
    try:
        record = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("Discarding malformed notification payload")
        return None
    return record if isinstance(record, dict) else None
