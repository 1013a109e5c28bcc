"""
Real-time fan-out of mutation events.

ConnectionManager keeps the WebSocket connections of this process, keyed by
user id. Each connection owns an outbound queue drained by a single sender
task, so messages reach a client in the order they were published.

EventPublisher is the sink used by the mutation coordinator. With the
"local" backend it hands events straight to the ConnectionManager; with the
"redis" backend it publishes to Redis Pub/Sub and every worker relays the
messages to its own connections. Publishing is best effort: failures are
logged and never reach the caller.

Channel format: budget_events:{user_id}
"""
import asyncio
import enum
import json
import logging
import os
import threading
from typing import Any, Dict, Optional, Set

import redis
import redis.asyncio as aioredis
from fastapi import Request, WebSocket

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "budget_events"


class EventType(str, enum.Enum):
    CONNECT = "connect"
    TRANSACTION_ADDED = "transaction-added"
    TRANSACTION_UPDATED = "transaction-updated"
    TRANSACTION_DELETED = "transaction-deleted"
    SAVINGS_GOAL_ADDED = "savings-goal-added"
    SAVINGS_GOAL_UPDATED = "savings-goal-updated"
    SAVINGS_GOAL_DELETED = "savings-goal-deleted"
    BUDGET_SETTINGS_UPDATED = "budget-settings-updated"


class Connection:
    """One connected client: its socket, owner and ordered outbound queue."""

    def __init__(self, websocket: WebSocket, user_id: int, loop: asyncio.AbstractEventLoop):
        self.websocket = websocket
        self.user_id = user_id
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue()

    def enqueue(self, payload: str) -> None:
        # Safe from any thread; the queue belongs to the connection's loop
        self.loop.call_soon_threadsafe(self.queue.put_nowait, payload)

    async def pump(self) -> None:
        """Send queued messages until cancelled or the socket fails."""
        while True:
            payload = await self.queue.get()
            await self.websocket.send_text(payload)


class ConnectionManager:
    """Registry of live WebSocket connections for this process."""

    def __init__(self):
        self._lock = threading.Lock()
        self._connections: Dict[int, Set[Connection]] = {}

    async def connect(self, websocket: WebSocket, user_id: int) -> Connection:
        await websocket.accept()
        connection = Connection(websocket, user_id, asyncio.get_running_loop())
        # The acknowledgment is queued before registration so it is always the first message
        connection.enqueue(json.dumps({
            "type": EventType.CONNECT.value,
            "message": "Real-time connection established",
        }))
        with self._lock:
            self._connections.setdefault(user_id, set()).add(connection)
        logger.info(f"[EVENTS] Client connected for user {user_id} ({self.count(user_id)} open)")
        return connection

    def disconnect(self, connection: Connection) -> None:
        with self._lock:
            connections = self._connections.get(connection.user_id)
            if connections is not None:
                connections.discard(connection)
                if not connections:
                    del self._connections[connection.user_id]
        logger.info(f"[EVENTS] Client disconnected for user {connection.user_id}")

    def count(self, user_id: Optional[int] = None) -> int:
        with self._lock:
            if user_id is not None:
                return len(self._connections.get(user_id, ()))
            return sum(len(c) for c in self._connections.values())

    def broadcast(self, user_id: int, message: Dict[str, Any]) -> int:
        """
        Queue a message for every connection of the user, the originator included.

        Returns:
            Number of connections the message was queued for
        """
        payload = json.dumps(message)
        with self._lock:
            targets = list(self._connections.get(user_id, ()))

        delivered = 0
        for connection in targets:
            try:
                connection.enqueue(payload)
                delivered += 1
            except RuntimeError as e:
                # The connection's event loop is gone
                logger.warning(f"[EVENTS] Dropping stale connection for user {user_id}: {e}")
                self.disconnect(connection)
        return delivered


class EventPublisher:
    """
    Publishes mutation events for connected clients.

    Event types:
    - transaction-added / transaction-updated / transaction-deleted
    - savings-goal-added / savings-goal-updated / savings-goal-deleted
    - budget-settings-updated
    """

    def __init__(
        self,
        connections: ConnectionManager,
        backend: Optional[str] = None,
        redis_url: Optional[str] = None,
    ):
        """
        Initialize the event publisher.

        Args:
            connections: Local connection registry
            backend: "local" or "redis". If not provided, uses EVENT_BACKEND env var.
            redis_url: Redis connection URL. If not provided, uses REDIS_URL env var.
        """
        self.connections = connections
        self.backend = (backend or os.getenv("EVENT_BACKEND", "local")).strip().lower()
        self.redis_url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self._redis: Optional[redis.Redis] = None
        self._ordering_locks: Dict[int, threading.Lock] = {}
        self._ordering_guard = threading.Lock()

    def ordering_lock(self, user_id: int) -> threading.Lock:
        """
        Lock held by writers while they commit and publish, so one user's
        events are published in commit order within this process.
        """
        with self._ordering_guard:
            return self._ordering_locks.setdefault(user_id, threading.Lock())

    @property
    def redis(self) -> redis.Redis:
        """Lazy-load Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    @staticmethod
    def _channel(user_id: int) -> str:
        return f"{CHANNEL_PREFIX}:{user_id}"

    def publish(self, user_id: int, event_type: EventType, data: Any = None) -> None:
        """
        Publish an event for the user's clients. Never raises.

        Args:
            user_id: Owner of the mutated entity
            event_type: Event taxonomy member
            data: JSON-safe payload (the entity, or {"id": ...} for deletes)
        """
        message = {"type": event_type.value, "data": data}
        try:
            if self.backend == "redis":
                try:
                    self.redis.publish(self._channel(user_id), json.dumps(message))
                    logger.debug(f"[EVENTS] Published {event_type.value} to {self._channel(user_id)}")
                    return
                except Exception as e:
                    logger.error(f"[EVENTS] Redis publish failed, delivering locally: {e}")

            delivered = self.connections.broadcast(user_id, message)
            logger.debug(f"[EVENTS] {event_type.value} queued for {delivered} connection(s) of user {user_id}")
        except Exception as e:
            logger.error(f"[EVENTS] Failed to publish event {event_type.value}: {e}")

    def publish_transaction_added(self, user_id: int, transaction: dict) -> None:
        self.publish(user_id, EventType.TRANSACTION_ADDED, transaction)

    def publish_transaction_updated(self, user_id: int, transaction: dict) -> None:
        self.publish(user_id, EventType.TRANSACTION_UPDATED, transaction)

    def publish_transaction_deleted(self, user_id: int, transaction_id: int) -> None:
        self.publish(user_id, EventType.TRANSACTION_DELETED, {"id": transaction_id})

    def publish_savings_goal_added(self, user_id: int, goal: dict) -> None:
        self.publish(user_id, EventType.SAVINGS_GOAL_ADDED, goal)

    def publish_savings_goal_updated(self, user_id: int, goal: dict) -> None:
        self.publish(user_id, EventType.SAVINGS_GOAL_UPDATED, goal)

    def publish_savings_goal_deleted(self, user_id: int, goal_id: int) -> None:
        self.publish(user_id, EventType.SAVINGS_GOAL_DELETED, {"id": goal_id})

    def publish_budget_settings_updated(self, user_id: int, settings: dict) -> None:
        self.publish(user_id, EventType.BUDGET_SETTINGS_UPDATED, settings)

    async def relay_from_redis(self, poll_timeout: float = 1.0) -> None:
        """
        Forward events published by any worker to this process's connections.
        Runs until cancelled; reconnects after Redis errors.
        """
        while True:
            redis_client = aioredis.from_url(self.redis_url, decode_responses=True)
            pubsub = redis_client.pubsub()
            try:
                await pubsub.psubscribe(f"{CHANNEL_PREFIX}:*")
                logger.info(f"[EVENTS] Relaying Redis channel {CHANNEL_PREFIX}:*")
                while True:
                    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=poll_timeout)
                    if not message or message["type"] != "pmessage":
                        continue
                    self._relay_message(message["channel"], message["data"])
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"[EVENTS] Redis relay error, retrying: {e}")
                await asyncio.sleep(poll_timeout)
            finally:
                await pubsub.close()
                await redis_client.close()

    def _relay_message(self, channel: str, data: str) -> None:
        try:
            user_id = int(channel.rsplit(":", 1)[1])
            message = json.loads(data)
        except (ValueError, IndexError) as e:
            logger.warning(f"[EVENTS] Ignoring malformed relay message on {channel}: {e}")
            return
        self.connections.broadcast(user_id, message)

    def close(self) -> None:
        """Close the Redis connection."""
        if self._redis:
            self._redis.close()
            self._redis = None


def get_event_publisher(request: Request) -> EventPublisher:
    """FastAPI dependency returning the application's publisher."""
    return request.app.state.event_publisher
