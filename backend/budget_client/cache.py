"""
Client-side cache of derived budget state.

Each collection is cached independently with its own staleness window.
Real-time events invalidate the affected collections and trigger an eager
refetch; when no events arrive (channel degraded) entries simply expire and
are refetched on next access.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

from budget_client.events import EventBus, EventMessage, EventType

logger = logging.getLogger(__name__)


class CacheKey(str, Enum):
    DAILY_BUDGET = "daily-budget"
    TRANSACTIONS = "transactions"
    SAVINGS_GOALS = "savings-goals"
    BUDGET_SETTINGS = "budget-settings"


DEFAULT_STALE_AFTER: Dict[CacheKey, float] = {
    CacheKey.DAILY_BUDGET: 15 * 60,
    CacheKey.TRANSACTIONS: 5 * 60,
    CacheKey.SAVINGS_GOALS: 5 * 60,
    CacheKey.BUDGET_SETTINGS: 5 * 60,
}

INVALIDATION_MAP: Dict[EventType, Tuple[CacheKey, ...]] = {
    EventType.TRANSACTION_ADDED: (CacheKey.TRANSACTIONS, CacheKey.DAILY_BUDGET),
    EventType.TRANSACTION_UPDATED: (CacheKey.TRANSACTIONS, CacheKey.DAILY_BUDGET),
    EventType.TRANSACTION_DELETED: (CacheKey.TRANSACTIONS, CacheKey.DAILY_BUDGET),
    EventType.SAVINGS_GOAL_ADDED: (CacheKey.SAVINGS_GOALS, CacheKey.DAILY_BUDGET),
    EventType.SAVINGS_GOAL_UPDATED: (CacheKey.SAVINGS_GOALS, CacheKey.DAILY_BUDGET),
    EventType.SAVINGS_GOAL_DELETED: (CacheKey.SAVINGS_GOALS, CacheKey.DAILY_BUDGET),
    EventType.BUDGET_SETTINGS_UPDATED: (CacheKey.BUDGET_SETTINGS, CacheKey.DAILY_BUDGET),
}

Fetcher = Callable[[], Awaitable[Any]]


@dataclass
class CacheEntry:
    value: Any = None
    fetched_at: Optional[float] = None
    invalidated: bool = False

    def is_fresh(self, now: float, stale_after: float) -> bool:
        if self.fetched_at is None or self.invalidated:
            return False
        return now - self.fetched_at < stale_after


class DerivedStateCache:
    """
    Args:
        fetchers: One coroutine function per cached collection
        stale_after: Per-key staleness windows in seconds, merged over the defaults
        clock: Monotonic time source
    """

    def __init__(
        self,
        fetchers: Mapping[CacheKey, Fetcher],
        stale_after: Optional[Mapping[CacheKey, float]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetchers = dict(fetchers)
        self._stale_after = {**DEFAULT_STALE_AFTER, **(stale_after or {})}
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {key: CacheEntry() for key in CacheKey}
        self._locks: Dict[CacheKey, asyncio.Lock] = {}

    def _lock(self, key: CacheKey) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    def is_stale(self, key: CacheKey) -> bool:
        return not self._entries[key].is_fresh(self._clock(), self._stale_after[key])

    def peek(self, key: CacheKey) -> Any:
        """Return the cached value (fresh or not) without fetching."""
        return self._entries[key].value

    async def get(self, key: CacheKey) -> Any:
        """Return the cached value if fresh, otherwise fetch it."""
        key = CacheKey(key)
        if not self.is_stale(key):
            return self._entries[key].value
        return await self.refresh(key)

    async def refresh(self, key: CacheKey) -> Any:
        """
        Fetch a collection and store it.

        Refreshes of the same key run one at a time. A failed fetch leaves
        the previous value in place, marked stale, and re-raises.
        """
        key = CacheKey(key)
        fetcher = self._fetchers.get(key)
        if fetcher is None:
            raise KeyError(f"No fetcher registered for {key.value}")

        async with self._lock(key):
            entry = self._entries[key]
            try:
                value = await fetcher()
            except Exception:
                entry.invalidated = True
                raise
            entry.value = value
            entry.fetched_at = self._clock()
            entry.invalidated = False
            return value

    def invalidate(self, key: CacheKey) -> None:
        self._entries[CacheKey(key)].invalidated = True

    async def handle_event(self, message: EventMessage) -> None:
        """Invalidate and eagerly refetch the collections an event affects."""
        keys = INVALIDATION_MAP.get(message.event_type, ())
        for key in keys:
            self.invalidate(key)

        for key in keys:
            if key not in self._fetchers:
                continue
            try:
                await self.refresh(key)
            except Exception as e:
                logger.warning(f"[CACHE] Refetch of {key.value} after {message.type} failed, left stale: {e}")

    def bind(self, bus: EventBus) -> Callable[[], None]:
        """Subscribe to the events that affect cached state."""
        return bus.subscribe(self.handle_event, INVALIDATION_MAP.keys())
