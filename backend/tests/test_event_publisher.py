"""
Unit tests for the event publisher and connection registry.
"""
import asyncio
import json

import redis

from app.services.event_publisher import ConnectionManager, EventPublisher, EventType


class FakeWebSocket:
    def __init__(self):
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, payload):
        self.sent.append(json.loads(payload))


class RecordingRedis:
    def __init__(self):
        self.published = []

    def publish(self, channel, message):
        self.published.append((channel, json.loads(message)))


class BrokenRedis:
    def publish(self, channel, message):
        raise redis.ConnectionError("Redis is down")

    def close(self):
        pass


def _drain(connection):
    return [json.loads(connection.queue.get_nowait()) for _ in range(connection.queue.qsize())]


def test_local_publish_reaches_only_the_owner() -> None:
    async def scenario():
        manager = ConnectionManager()
        mine = await manager.connect(FakeWebSocket(), user_id=1)
        theirs = await manager.connect(FakeWebSocket(), user_id=2)
        publisher = EventPublisher(manager, backend="local")

        publisher.publish_transaction_added(1, {"id": 7})
        await asyncio.sleep(0)
        return _drain(mine), _drain(theirs)

    mine, theirs = asyncio.run(scenario())
    assert mine == [
        {"type": "connect", "message": "Real-time connection established"},
        {"type": "transaction-added", "data": {"id": 7}},
    ]
    assert [m["type"] for m in theirs] == ["connect"]


def test_redis_backend_publishes_to_user_channel() -> None:
    manager = ConnectionManager()
    publisher = EventPublisher(manager, backend="redis")
    publisher._redis = RecordingRedis()

    publisher.publish_savings_goal_deleted(5, 11)

    assert publisher._redis.published == [
        ("budget_events:5", {"type": "savings-goal-deleted", "data": {"id": 11}}),
    ]


def test_redis_failure_falls_back_to_local_delivery() -> None:
    async def scenario():
        manager = ConnectionManager()
        connection = await manager.connect(FakeWebSocket(), user_id=1)
        publisher = EventPublisher(manager, backend="redis")
        publisher._redis = BrokenRedis()

        publisher.publish_transaction_deleted(1, 42)
        await asyncio.sleep(0)
        return _drain(connection)

    messages = asyncio.run(scenario())
    assert messages[-1] == {"type": "transaction-deleted", "data": {"id": 42}}


def test_publish_never_raises(monkeypatch) -> None:
    manager = ConnectionManager()

    def explode(user_id, message):
        raise RuntimeError("boom")

    monkeypatch.setattr(manager, "broadcast", explode)
    publisher = EventPublisher(manager, backend="local")

    publisher.publish(1, EventType.BUDGET_SETTINGS_UPDATED, {"id": 1})


def test_publish_without_connections_is_a_no_op() -> None:
    manager = ConnectionManager()
    assert manager.broadcast(99, {"type": "transaction-added"}) == 0


def test_relay_message_routes_by_channel() -> None:
    async def scenario():
        manager = ConnectionManager()
        connection = await manager.connect(FakeWebSocket(), user_id=3)
        publisher = EventPublisher(manager, backend="redis")

        publisher._relay_message("budget_events:3", json.dumps({"type": "transaction-added", "data": {"id": 1}}))
        publisher._relay_message("budget_events:oops", "{}")
        publisher._relay_message("budget_events:3", "not json")
        await asyncio.sleep(0)
        return _drain(connection)

    messages = asyncio.run(scenario())
    assert [m["type"] for m in messages] == ["connect", "transaction-added"]


def test_pump_sends_in_queue_order() -> None:
    async def scenario():
        manager = ConnectionManager()
        websocket = FakeWebSocket()
        connection = await manager.connect(websocket, user_id=1)
        for n in range(3):
            manager.broadcast(1, {"type": "transaction-added", "data": {"id": n}})

        sender = asyncio.create_task(connection.pump())
        for _ in range(10):
            await asyncio.sleep(0)
        sender.cancel()
        manager.disconnect(connection)
        return websocket, manager.count()

    websocket, remaining = asyncio.run(scenario())
    assert websocket.accepted
    assert [m["type"] for m in websocket.sent] == ["connect"] + ["transaction-added"] * 3
    assert [m["data"]["id"] for m in websocket.sent[1:]] == [0, 1, 2]
    assert remaining == 0
