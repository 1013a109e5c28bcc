"""
Async HTTP client for the Daily Budget API.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from budget_client.cache import CacheKey, Fetcher

logger = logging.getLogger(__name__)


class BudgetApiError(Exception):
    """Raised when the API answers with an error status or cannot be reached."""

    def __init__(self, detail: Any, status_code: Optional[int] = None):
        super().__init__(f"{status_code}: {detail}" if status_code else str(detail))
        self.detail = detail
        self.status_code = status_code


class BudgetApiClient:
    """
    Thin wrapper over the REST API. Payloads are plain camelCase dicts as
    returned by the server.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        """
        Args:
            base_url: Server root, e.g. ``http://localhost:8000``
            token: Session token from login/register
            client: Pre-built httpx client (tests pass one with an ASGI transport)
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            headers={"User-Agent": "Daily-Budget-Client/0.1"},
        )

    def _headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, f"/api{path}", headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"HTTP error calling {method} {path}: {e}")
            raise BudgetApiError(str(e)) from e

        if response.is_error:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise BudgetApiError(detail, status_code=response.status_code)

        return response.json()

    def websocket_url(self) -> str:
        """Real-time endpoint derived from the base URL."""
        url = httpx.URL(self.base_url)
        scheme = "wss" if url.scheme == "https" else "ws"
        return str(url.copy_with(scheme=scheme, path="/ws"))

    # Auth

    async def register(self, username: str, email: str, password: str, **names) -> Dict[str, Any]:
        payload = {"username": username, "email": email, "password": password, **names}
        result = await self._request("POST", "/auth/register", json=payload)
        self.token = result["token"]
        return result

    async def login(self, username: str, password: str) -> Dict[str, Any]:
        result = await self._request("POST", "/auth/login", json={"username": username, "password": password})
        self.token = result["token"]
        return result

    async def logout(self) -> None:
        await self._request("POST", "/auth/logout")
        self.token = None

    # Reads

    async def get_daily_budget(self) -> Dict[str, Any]:
        return await self._request("GET", "/daily-budget")

    async def list_transactions(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/transactions")

    async def list_transactions_in_range(self, start_date: date, end_date: date) -> List[Dict[str, Any]]:
        params = {"startDate": start_date.isoformat(), "endDate": end_date.isoformat()}
        return await self._request("GET", "/transactions/date-range", params=params)

    async def list_savings_goals(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/savings-goals")

    async def get_budget_settings(self) -> Dict[str, Any]:
        return await self._request("GET", "/budget-settings")

    async def list_categories(self, category_type: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"type": category_type} if category_type else None
        return await self._request("GET", "/categories", params=params)

    def fetchers(self) -> Dict[CacheKey, Fetcher]:
        """Fetchers for DerivedStateCache."""
        return {
            CacheKey.DAILY_BUDGET: self.get_daily_budget,
            CacheKey.TRANSACTIONS: self.list_transactions,
            CacheKey.SAVINGS_GOALS: self.list_savings_goals,
            CacheKey.BUDGET_SETTINGS: self.get_budget_settings,
        }

    # Mutations

    async def create_transaction(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/transactions", json=payload)

    async def update_transaction(self, transaction_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", f"/transactions/{transaction_id}", json=payload)

    async def delete_transaction(self, transaction_id: int) -> Dict[str, Any]:
        return await self._request("DELETE", f"/transactions/{transaction_id}")

    async def upsert_budget_settings(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/budget-settings", json=payload)

    async def create_savings_goal(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/savings-goals", json=payload)

    async def add_funds(self, goal_id: int, amount: float) -> Dict[str, Any]:
        return await self._request("POST", f"/savings-goals/{goal_id}/contributions", json={"amount": amount})

    async def update_savings_goal(self, goal_id: int, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", f"/savings-goals/{goal_id}", json=payload)

    async def delete_savings_goal(self, goal_id: int) -> Dict[str, Any]:
        return await self._request("DELETE", f"/savings-goals/{goal_id}")

    async def aclose(self) -> None:
        await self.client.aclose()
