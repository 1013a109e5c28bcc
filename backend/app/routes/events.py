"""
WebSocket endpoint for real-time notifications.
Pushes mutation events (transactions, savings goals, budget settings) to every
connected client of the owning user so they can refresh derived state.
"""
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from app.database import SessionLocal
from app.db_helpers import extract_session_token, resolve_session_user_id

logger = logging.getLogger(__name__)

router = APIRouter()


def _authenticate(token: Optional[str]) -> Optional[int]:
    db = SessionLocal()
    try:
        return resolve_session_user_id(db, token)
    finally:
        db.close()


@router.websocket("/ws")
async def realtime_channel(websocket: WebSocket):
    """
    Real-time channel.

    Authenticate with the `token` query parameter, a bearer Authorization
    header or the session cookie. Unauthenticated connections are closed
    with code 1008.

    Messages are JSON envelopes `{type, data?, message?}`:

    - connect: sent immediately after the connection is accepted
    - transaction-added / transaction-updated / transaction-deleted
    - savings-goal-added / savings-goal-updated / savings-goal-deleted
    - budget-settings-updated

    Delivery is best effort and at most once; nothing is replayed after a
    reconnect. Messages sent by the client are ignored.
    """
    token = websocket.query_params.get("token") or extract_session_token(websocket.headers, websocket.cookies)
    user_id = await run_in_threadpool(_authenticate, token)
    if not user_id:
        logger.info("[EVENTS] Rejected unauthenticated WebSocket connection")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    connections = websocket.app.state.connections
    connection = await connections.connect(websocket, user_id)
    sender = asyncio.create_task(connection.pump())

    try:
        while True:
            receive = asyncio.ensure_future(websocket.receive_text())
            done, _ = await asyncio.wait({receive, sender}, return_when=asyncio.FIRST_COMPLETED)
            if sender in done:
                receive.cancel()
                # Surfaces the send failure, if any
                sender.result()
                break
            receive.result()
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"[EVENTS] WebSocket error for user {user_id}: {e}")
    finally:
        connections.disconnect(connection)
        sender.cancel()
        logger.info(f"[EVENTS] WebSocket closed for user {user_id}")
