import logging
from typing import Any, Optional

from budget_client.api import BudgetApiClient
from budget_client.cache import CacheKey, DerivedStateCache
from budget_client.events import EventBus
from budget_client.realtime import ConnectionStatus, RealtimeClient

logger = logging.getLogger(__name__)


class BudgetSync:
    """
    Keeps a DerivedStateCache current for one logged-in session.

    While the real-time channel is connected, events refresh the cache as
    soon as they arrive. If it degrades, reads fall back to the staleness
    windows (polling).
    """

    def __init__(
        self,
        api: BudgetApiClient,
        realtime: Optional[RealtimeClient] = None,
        cache: Optional[DerivedStateCache] = None,
        bus: Optional[EventBus] = None,
    ):
        self.api = api
        self.bus = bus or (realtime.bus if realtime else EventBus())
        self.realtime = realtime or RealtimeClient(api.websocket_url(), token=api.token, bus=self.bus)
        self.cache = cache or DerivedStateCache(api.fetchers())
        self._unbind = None

    @property
    def mode(self) -> str:
        return "realtime" if self.realtime.status == ConnectionStatus.CONNECTED else "polling"

    async def start(self) -> None:
        if self._unbind is None:
            self._unbind = self.cache.bind(self.realtime.bus)
        await self.realtime.start()

    async def stop(self) -> None:
        await self.realtime.stop()
        if self._unbind is not None:
            self._unbind()
            self._unbind = None

    async def daily_budget(self) -> Any:
        return await self.cache.get(CacheKey.DAILY_BUDGET)

    async def transactions(self) -> Any:
        return await self.cache.get(CacheKey.TRANSACTIONS)

    async def savings_goals(self) -> Any:
        return await self.cache.get(CacheKey.SAVINGS_GOALS)

    async def budget_settings(self) -> Any:
        return await self.cache.get(CacheKey.BUDGET_SETTINGS)
