"""
WebSocket client for the real-time channel.

The client owns a small state machine:

    disconnected -> connecting -> connected
                         |             |
                         +-------------+--> (retry after back-off) ...
                                           -> degraded (retries exhausted)

In the degraded state no further attempts are made until `reconnect()` or
`start()` is called again; callers fall back to polling.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

import httpx
import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from budget_client.events import EventBus, EventMessage, EventType, Handler

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_RECONNECT_DELAY = 3.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 5

ConnectFactory = Callable[[str], Awaitable[Any]]


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"


def _default_connect(url: str) -> Awaitable[Any]:
    return websockets.connect(url)


class RealtimeClient:
    """
    Receives event envelopes from `WS /ws` and publishes them on an EventBus.

    Args:
        url: WebSocket endpoint, e.g. ``ws://localhost:8000/ws``
        token: Session token, sent as the ``token`` query parameter
        bus: Event bus to publish on (a new one is created if omitted)
        connect_factory: Coroutine factory returning an open socket; the
            socket must support ``async for`` over messages and ``close()``
        connect_timeout: Seconds allowed for connection setup
        reconnect_delay: Fixed back-off between attempts, in seconds
        max_reconnect_attempts: Consecutive failures tolerated before degrading
    """

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        bus: Optional[EventBus] = None,
        connect_factory: Optional[ConnectFactory] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.url = url
        self.token = token
        self.bus = bus or EventBus()
        self.connect_timeout = connect_timeout
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self._connect_factory = connect_factory or _default_connect
        self._sleep = sleep
        self._status = ConnectionStatus.DISCONNECTED
        self._socket = None
        self._task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._stopping = False
        self.reconnect_attempts = 0

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    def is_connected(self) -> bool:
        return self._status == ConnectionStatus.CONNECTED

    def subscribe(
        self,
        handler: Handler,
        event_types: Optional[Iterable[EventType]] = None,
    ) -> Callable[[], None]:
        return self.bus.subscribe(handler, event_types)

    def unsubscribe(self, handler: Handler, event_types: Optional[Iterable[EventType]] = None) -> None:
        self.bus.unsubscribe(handler, event_types)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status != self._status:
            logger.debug(f"[REALTIME] {self._status.value} -> {status.value}")
            self._status = status

    def _endpoint(self) -> str:
        if not self.token:
            return self.url
        return str(httpx.URL(self.url, params={"token": self.token}))

    async def connect(self) -> bool:
        """
        Make a single connection attempt.

        Returns False without trying when another attempt is already in
        progress.
        """
        return bool(await self._attempt())

    async def _attempt(self) -> Optional[bool]:
        # None means another attempt holds the lock and nothing was tried
        if self._lock.locked():
            logger.debug("[REALTIME] Connection attempt already in progress")
            return None

        async with self._lock:
            if self._status == ConnectionStatus.CONNECTED:
                return True

            self._set_status(ConnectionStatus.CONNECTING)
            try:
                socket = await asyncio.wait_for(
                    self._connect_factory(self._endpoint()),
                    timeout=self.connect_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(f"[REALTIME] Connection timed out after {self.connect_timeout}s")
                self._set_status(ConnectionStatus.DISCONNECTED)
                return False
            except (OSError, WebSocketException) as e:
                logger.warning(f"[REALTIME] Connection failed: {e}")
                self._set_status(ConnectionStatus.DISCONNECTED)
                return False

            self._socket = socket
            self.reconnect_attempts = 0
            self._set_status(ConnectionStatus.CONNECTED)
            logger.info("[REALTIME] Connected")
            return True

    async def _dispatch(self, raw) -> None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            message = EventMessage.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"[REALTIME] Dropping malformed message: {e.error_count()} error(s)")
            return
        await self.bus.publish(message)

    async def _receive(self) -> None:
        socket = self._socket
        try:
            async for raw in socket:
                await self._dispatch(raw)
        except ConnectionClosed as e:
            logger.info(f"[REALTIME] Connection closed: {e}")
        except OSError as e:
            logger.warning(f"[REALTIME] Transport error: {e}")
        finally:
            self._socket = None
            await self._close_socket(socket)

    async def _close_socket(self, socket) -> None:
        if socket is None:
            return
        try:
            await socket.close()
        except (OSError, WebSocketException) as e:
            logger.debug(f"[REALTIME] Error while closing socket: {e}")

    async def _run(self) -> None:
        while not self._stopping:
            connected = await self._attempt()
            if connected is None:
                # Another caller is connecting; wait for it instead of spending a retry
                async with self._lock:
                    pass
                continue

            if connected:
                await self._receive()
                if self._stopping:
                    break
                self._set_status(ConnectionStatus.DISCONNECTED)

            self.reconnect_attempts += 1
            if self.reconnect_attempts > self.max_reconnect_attempts:
                self._set_status(ConnectionStatus.DEGRADED)
                logger.error(
                    f"[REALTIME] Giving up after {self.max_reconnect_attempts} reconnection attempts; "
                    "continuing without real-time updates"
                )
                return

            logger.info(
                f"[REALTIME] Reconnecting in {self.reconnect_delay}s "
                f"(attempt {self.reconnect_attempts}/{self.max_reconnect_attempts})"
            )
            await self._sleep(self.reconnect_delay)

    def _running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the connection loop in the background."""
        if self._running():
            return
        self._stopping = False
        self.reconnect_attempts = 0
        self._task = asyncio.create_task(self._run())

    async def reconnect(self) -> bool:
        """
        Restart the connection loop after it degraded or stopped.

        Returns False when the loop is still running.
        """
        if self._running():
            logger.debug("[REALTIME] Reconnect suppressed; connection loop already running")
            return False
        await self.start()
        return True

    async def join(self) -> None:
        """Wait for the connection loop to finish (stopped or degraded)."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def stop(self) -> None:
        self._stopping = True
        socket, self._socket = self._socket, None
        await self._close_socket(socket)

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self._set_status(ConnectionStatus.DISCONNECTED)
