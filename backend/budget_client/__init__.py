"""
Python client for the Daily Budget API.

Keeps a local, derived view of a user's budget in sync with the server:

    from budget_client import BudgetApiClient, BudgetSync

    api = BudgetApiClient("http://localhost:8000", token=token)
    sync = BudgetSync(api)
    await sync.start()
    report = await sync.daily_budget()

Components:
    - EventBus: typed publish/subscribe for real-time events
    - RealtimeClient: WebSocket connection with bounded reconnection
    - DerivedStateCache: per-collection cache invalidated by events
    - BudgetApiClient: async HTTP client (httpx)
    - BudgetSync: wires the above together for one session
"""
from budget_client.api import BudgetApiClient, BudgetApiError
from budget_client.cache import CacheKey, DerivedStateCache, INVALIDATION_MAP
from budget_client.events import EventBus, EventMessage, EventType
from budget_client.realtime import ConnectionStatus, RealtimeClient
from budget_client.sync import BudgetSync

__all__ = [
    "BudgetApiClient",
    "BudgetApiError",
    "BudgetSync",
    "CacheKey",
    "ConnectionStatus",
    "DerivedStateCache",
    "EventBus",
    "EventMessage",
    "EventType",
    "INVALIDATION_MAP",
    "RealtimeClient",
]
