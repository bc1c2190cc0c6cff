"""
realtime/routes.py -- WebSocket endpoint for per-user update channels.

Browsers cannot set an Authorization header on a WebSocket handshake, so the
access token travels as a query parameter:

    ws://host/ws/updates?access_token=<jwt>

The same checks as the HTTP Bearer dependency apply (signature, expiry,
not revoked, user activated). An invalid token closes the socket with
policy-violation code 1008 before it is accepted.

Messages only flow server -> client. Anything the client sends is read and
discarded so disconnects are noticed.
"""

from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from auth.dependencies import user_from_token

router = APIRouter()


@router.websocket("/ws/updates")
async def updates(websocket: WebSocket, access_token: str = "") -> None:
    user = await run_in_threadpool(user_from_token, websocket.app.state.user_store, access_token)
    if user is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    registry = websocket.app.state.connections
    await websocket.accept()
    registry.register(user.login, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        registry.unregister(user.login, websocket)
