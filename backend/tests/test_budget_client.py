"""
Tests for the client package: event bus, realtime client state machine,
derived-state cache and the HTTP client against the app.
"""
import asyncio
import json
from datetime import date

import httpx
import pytest

from app.main import app
from app.services.event_publisher import EventType as ServerEventType
from budget_client import (
    BudgetApiClient,
    BudgetApiError,
    BudgetSync,
    CacheKey,
    ConnectionStatus,
    DerivedStateCache,
    EventBus,
    EventMessage,
    EventType,
    RealtimeClient,
)


def event(event_type, data=None):
    return EventMessage(type=event_type.value, data=data)


class FakeSocket:
    """Yields the given raw messages, then behaves like a closed connection."""

    def __init__(self, messages=(), hold_open=False):
        self.messages = list(messages)
        self.hold_open = hold_open
        self.closed = asyncio.Event()

    def __aiter__(self):
        return self

    async def __anext__(self):
        await asyncio.sleep(0)
        if self.messages:
            return self.messages.pop(0)
        if self.hold_open:
            await self.closed.wait()
        raise StopAsyncIteration

    async def close(self):
        self.closed.set()


class FakeServer:
    """Connect factory returning scripted outcomes; refuses once the script is exhausted."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.urls = []

    async def connect(self, url):
        self.urls.append(url)
        outcome = self.outcomes.pop(0) if self.outcomes else OSError("Connection refused")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


async def no_sleep(delay):
    await asyncio.sleep(0)


def envelope(event_type, data=None):
    return json.dumps({"type": event_type, "data": data})


# Event bus

def test_event_taxonomy_matches_server() -> None:
    assert {e.value for e in EventType} == {e.value for e in ServerEventType}


def test_bus_delivers_by_type_and_unsubscribes() -> None:
    bus = EventBus()
    added, everything = [], []

    unsubscribe = bus.subscribe(added.append, [EventType.TRANSACTION_ADDED])
    bus.subscribe(everything.append)

    asyncio.run(bus.publish(event(EventType.TRANSACTION_ADDED)))
    asyncio.run(bus.publish(event(EventType.SAVINGS_GOAL_DELETED)))
    unsubscribe()
    asyncio.run(bus.publish(event(EventType.TRANSACTION_ADDED)))

    assert [m.type for m in added] == ["transaction-added"]
    assert [m.type for m in everything] == ["transaction-added", "savings-goal-deleted", "transaction-added"]
    assert bus.handler_count(EventType.TRANSACTION_ADDED) == 0


def test_bus_isolates_failing_handlers() -> None:
    bus = EventBus()
    received = []

    def broken(message):
        raise ValueError("handler bug")

    async def async_handler(message):
        received.append(message.type)

    bus.subscribe(broken)
    bus.subscribe(async_handler)
    asyncio.run(bus.publish(event(EventType.BUDGET_SETTINGS_UPDATED)))

    assert received == ["budget-settings-updated"]


def test_unknown_event_types_reach_only_catch_all_handlers() -> None:
    bus = EventBus()
    typed, everything = [], []
    bus.subscribe(typed.append, list(EventType))
    bus.subscribe(everything.append)

    asyncio.run(bus.publish(EventMessage(type="something-new")))

    assert typed == []
    assert len(everything) == 1


# Realtime client

def test_realtime_client_delivers_then_degrades_after_max_retries() -> None:
    server = FakeServer(FakeSocket([
        envelope("connect"),
        envelope("transaction-added", {"id": 1}),
    ]))
    delays = []

    async def record_sleep(delay):
        delays.append(delay)

    async def scenario():
        client = RealtimeClient("ws://test/ws", token="abc", connect_factory=server.connect, sleep=record_sleep)
        received = []
        client.subscribe(received.append)
        await client.start()
        await client.join()
        return client, received

    client, received = asyncio.run(scenario())

    assert [m.type for m in received] == ["connect", "transaction-added"]
    assert client.status == ConnectionStatus.DEGRADED
    assert not client.is_connected()
    assert len(server.urls) == 6
    assert server.urls[0] == "ws://test/ws?token=abc"
    assert delays == [3.0] * 5


def test_realtime_client_connection_timeout() -> None:
    async def hang(url):
        await asyncio.Event().wait()

    async def scenario():
        client = RealtimeClient(
            "ws://test/ws",
            connect_factory=hang,
            connect_timeout=0.01,
            max_reconnect_attempts=1,
            sleep=no_sleep,
        )
        await client.start()
        await client.join()
        return client

    client = asyncio.run(scenario())
    assert client.status == ConnectionStatus.DEGRADED
    assert client.reconnect_attempts == 2


def test_concurrent_connect_attempts_are_suppressed() -> None:
    calls = []

    async def slow_connect(url):
        calls.append(url)
        await asyncio.sleep(0.01)
        return FakeSocket(hold_open=True)

    async def scenario():
        client = RealtimeClient("ws://test/ws", connect_factory=slow_connect)
        results = await asyncio.gather(client.connect(), client.connect())
        status = client.status
        await client.stop()
        return results, status

    results, status = asyncio.run(scenario())
    assert results == [True, False]
    assert len(calls) == 1
    assert status == ConnectionStatus.CONNECTED


def test_loop_waits_for_a_connect_already_in_progress() -> None:
    async def scenario():
        release = asyncio.Event()

        async def slow_connect(url):
            await release.wait()
            return FakeSocket(hold_open=True)

        client = RealtimeClient("ws://test/ws", connect_factory=slow_connect, max_reconnect_attempts=0, sleep=no_sleep)
        manual = asyncio.create_task(client.connect())
        await asyncio.sleep(0)

        await client.start()
        for _ in range(5):
            await asyncio.sleep(0)
        waiting = (client.status, client.reconnect_attempts)

        release.set()
        manual_result = await manual
        for _ in range(5):
            await asyncio.sleep(0)
        loop_running = not await client.reconnect()
        after = (client.status, client.reconnect_attempts)
        await client.stop()
        return waiting, manual_result, loop_running, after

    waiting, manual_result, loop_running, after = asyncio.run(scenario())
    # The in-flight attempt is not a failure, even with no retries allowed
    assert waiting == (ConnectionStatus.CONNECTING, 0)
    assert manual_result is True
    assert loop_running
    assert after == (ConnectionStatus.CONNECTED, 0)


def test_retry_count_resets_after_successful_connection() -> None:
    server = FakeServer(
        OSError("refused"),
        OSError("refused"),
        FakeSocket([envelope("connect")]),
        OSError("refused"),
    )

    async def scenario():
        client = RealtimeClient("ws://test/ws", connect_factory=server.connect, max_reconnect_attempts=2, sleep=no_sleep)
        await client.start()
        await client.join()
        return client

    client = asyncio.run(scenario())
    # 2 failures, 1 success (counter reset), then the dropped connection and 2 more failures
    assert len(server.urls) == 5
    assert client.status == ConnectionStatus.DEGRADED


def test_malformed_messages_are_dropped() -> None:
    server = FakeServer(FakeSocket(["not json", b'{"no_type": true}', envelope("savings-goal-added", {"id": 3})]))

    async def scenario():
        client = RealtimeClient("ws://test/ws", connect_factory=server.connect, max_reconnect_attempts=0, sleep=no_sleep)
        received = []
        client.subscribe(received.append, [EventType.SAVINGS_GOAL_ADDED])
        await client.start()
        await client.join()
        return received

    received = asyncio.run(scenario())
    assert [m.data for m in received] == [{"id": 3}]


def test_stop_closes_the_socket() -> None:
    socket = FakeSocket(hold_open=True)
    server = FakeServer(socket)

    async def scenario():
        client = RealtimeClient("ws://test/ws", connect_factory=server.connect)
        await client.start()
        for _ in range(20):
            if client.is_connected():
                break
            await asyncio.sleep(0)
        connected = client.is_connected()
        await client.stop()
        return client, connected

    client, connected = asyncio.run(scenario())
    assert connected
    assert socket.closed.is_set()
    assert client.status == ConnectionStatus.DISCONNECTED


def test_reconnect_restarts_a_degraded_client() -> None:
    server = FakeServer()

    async def scenario():
        client = RealtimeClient("ws://test/ws", connect_factory=server.connect, max_reconnect_attempts=0, sleep=no_sleep)
        await client.start()
        await client.join()
        degraded = client.status

        server.outcomes.append(FakeSocket(hold_open=True))
        restarted = await client.reconnect()
        for _ in range(20):
            if client.is_connected():
                break
            await asyncio.sleep(0)
        suppressed = await client.reconnect()
        connected = client.is_connected()
        await client.stop()
        return degraded, restarted, suppressed, connected

    degraded, restarted, suppressed, connected = asyncio.run(scenario())
    assert degraded == ConnectionStatus.DEGRADED
    assert restarted is True
    assert suppressed is False
    assert connected


# Derived-state cache

class CountingFetchers:
    def __init__(self):
        self.calls = {key: 0 for key in CacheKey}
        self.fail = set()

    def fetchers(self):
        def make(key):
            async def fetch():
                if key in self.fail:
                    raise BudgetApiError("unavailable", status_code=503)
                self.calls[key] += 1
                return {"key": key.value, "version": self.calls[key]}
            return fetch
        return {key: make(key) for key in CacheKey}


def test_cache_serves_fresh_entries_and_expires_per_key() -> None:
    source, clock = CountingFetchers(), FakeClock()
    cache = DerivedStateCache(source.fetchers(), clock=clock)

    async def scenario():
        await cache.get(CacheKey.DAILY_BUDGET)
        await cache.get(CacheKey.TRANSACTIONS)
        clock.now += 4 * 60
        await cache.get(CacheKey.DAILY_BUDGET)
        await cache.get(CacheKey.TRANSACTIONS)
        clock.now += 2 * 60
        await cache.get(CacheKey.DAILY_BUDGET)
        await cache.get(CacheKey.TRANSACTIONS)
        clock.now += 10 * 60
        return await cache.get(CacheKey.DAILY_BUDGET)

    latest = asyncio.run(scenario())
    assert source.calls[CacheKey.TRANSACTIONS] == 2
    assert source.calls[CacheKey.DAILY_BUDGET] == 2
    assert latest["version"] == 2


def test_event_invalidates_and_refetches_affected_entries() -> None:
    source = CountingFetchers()
    cache = DerivedStateCache(source.fetchers(), clock=FakeClock())

    async def scenario():
        for key in CacheKey:
            await cache.get(key)
        await cache.handle_event(event(EventType.TRANSACTION_DELETED, {"id": 1}))

    asyncio.run(scenario())
    assert source.calls[CacheKey.TRANSACTIONS] == 2
    assert source.calls[CacheKey.DAILY_BUDGET] == 2
    assert source.calls[CacheKey.SAVINGS_GOALS] == 1
    assert source.calls[CacheKey.BUDGET_SETTINGS] == 1
    assert not cache.is_stale(CacheKey.DAILY_BUDGET)


@pytest.mark.parametrize(
    "event_type, refetched",
    [
        (EventType.SAVINGS_GOAL_UPDATED, {CacheKey.SAVINGS_GOALS, CacheKey.DAILY_BUDGET}),
        (EventType.BUDGET_SETTINGS_UPDATED, {CacheKey.BUDGET_SETTINGS, CacheKey.DAILY_BUDGET}),
        (EventType.CONNECT, set()),
    ],
)
def test_invalidation_map(event_type, refetched) -> None:
    source = CountingFetchers()
    cache = DerivedStateCache(source.fetchers(), clock=FakeClock())
    asyncio.run(cache.handle_event(event(event_type)))

    assert {key for key, count in source.calls.items() if count} == refetched


def test_failed_refetch_leaves_entry_stale() -> None:
    source = CountingFetchers()
    cache = DerivedStateCache(source.fetchers(), clock=FakeClock())

    async def scenario():
        await cache.get(CacheKey.DAILY_BUDGET)
        source.fail.add(CacheKey.DAILY_BUDGET)
        await cache.handle_event(event(EventType.TRANSACTION_ADDED))
        stale_value = cache.peek(CacheKey.DAILY_BUDGET)
        stale = cache.is_stale(CacheKey.DAILY_BUDGET)

        source.fail.clear()
        fresh_value = await cache.get(CacheKey.DAILY_BUDGET)
        return stale_value, stale, fresh_value

    stale_value, stale, fresh_value = asyncio.run(scenario())
    assert stale_value["version"] == 1
    assert stale is True
    assert fresh_value["version"] == 2


def test_cache_bound_to_bus() -> None:
    source = CountingFetchers()
    cache = DerivedStateCache(source.fetchers(), clock=FakeClock())
    bus = EventBus()
    unbind = cache.bind(bus)

    asyncio.run(bus.publish(event(EventType.SAVINGS_GOAL_ADDED)))
    unbind()
    asyncio.run(bus.publish(event(EventType.SAVINGS_GOAL_ADDED)))

    assert source.calls[CacheKey.SAVINGS_GOALS] == 1


# HTTP client against the app

def _api_client(token=None):
    transport = httpx.ASGITransport(app=app)
    http = httpx.AsyncClient(transport=transport, base_url="http://testserver")
    return BudgetApiClient("http://testserver", token=token, client=http)


def test_api_client_round_trip() -> None:
    async def scenario():
        api = _api_client()
        try:
            await api.register("carol", "carol@example.com", "secret123")
            await api.upsert_budget_settings({"monthlyIncome": "3100", "monthlyFixedExpenses": "1550"})
            created = await api.create_transaction(
                {"date": date.today().isoformat(), "amount": "5.00", "type": "expense"}
            )
            report = await api.get_daily_budget()
            goal = await api.create_savings_goal({"name": "Laptop", "targetAmount": "1200"})
            goal = await api.add_funds(goal["id"], 100)
            with pytest.raises(BudgetApiError) as exc_info:
                await api.delete_transaction(created["id"] + 1000)
            return report, goal, exc_info.value
        finally:
            await api.aclose()

    report, goal, error = asyncio.run(scenario())
    assert report["todaysExpenses"] == 5
    assert report["totalBudget"] == 1550
    assert goal["currentAmount"] == "100.00"
    assert error.status_code == 404


def test_api_client_websocket_url() -> None:
    assert BudgetApiClient("https://budget.example.com/").websocket_url() == "wss://budget.example.com/ws"
    assert BudgetApiClient("http://localhost:8000").websocket_url() == "ws://localhost:8000/ws"


def test_budget_sync_falls_back_to_polling() -> None:
    async def scenario():
        api = _api_client()
        try:
            await api.register("dave", "dave@example.com", "secret123")
            realtime = RealtimeClient(
                api.websocket_url(),
                token=api.token,
                connect_factory=FakeServer().connect,
                max_reconnect_attempts=0,
                sleep=no_sleep,
            )
            sync = BudgetSync(api, realtime=realtime)
            await sync.start()
            await realtime.join()
            mode = sync.mode

            before = await sync.daily_budget()
            await api.create_transaction({"date": date.today().isoformat(), "amount": "12.00", "type": "expense"})
            cached = await sync.daily_budget()

            # An event delivered on the bus refreshes the cached figures
            await realtime.bus.publish(event(EventType.TRANSACTION_ADDED))
            refreshed = sync.cache.peek(CacheKey.DAILY_BUDGET)
            await sync.stop()
            return mode, before, cached, refreshed
        finally:
            await api.aclose()

    mode, before, cached, refreshed = asyncio.run(scenario())
    assert mode == "polling"
    assert cached == before
    assert refreshed["todaysExpenses"] == 12
