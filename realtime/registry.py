"""
realtime/registry.py -- Per-user WebSocket channels and the notifier that feeds them.

ConnectionRegistry maps a login to the WebSockets that user currently has
open (one per browser tab). It is touched both from the event loop (connect,
disconnect) and from worker threads (sync route handlers sending
notifications), so every access goes through a lock.

WebSocketNotifier implements services.keys.Notifier. send() never blocks and
never raises: each socket send is scheduled as its own coroutine on the
server loop with asyncio.run_coroutine_threadsafe, and a done-callback logs
any failure. One dead socket therefore cannot delay or break delivery to the
others, nor the request that triggered the notification.

Delivery is best effort: no ack, no retry, no ordering guarantee across
recipients.

Layer rule: realtime/ may import from auth/ and core/. services/ never
imports from here; the notifier is injected in api/main.py.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from concurrent.futures import Future

from fastapi import WebSocket

logger = logging.getLogger("keyshare.realtime")


class ConnectionRegistry:
    """Thread-safe login -> open WebSockets map."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sockets: dict[str, set[WebSocket]] = defaultdict(set)

    def register(self, login: str, websocket: WebSocket) -> None:
        with self._lock:
            self._sockets[login].add(websocket)
        logger.debug("Channel opened for %s", login)

    def unregister(self, login: str, websocket: WebSocket) -> None:
        with self._lock:
            sockets = self._sockets.get(login)
            if sockets is None:
                return
            sockets.discard(websocket)
            if not sockets:
                del self._sockets[login]
        logger.debug("Channel closed for %s", login)

    def connections(self, login: str) -> list[WebSocket]:
        with self._lock:
            return list(self._sockets.get(login, ()))

    def count(self) -> int:
        with self._lock:
            return sum(len(s) for s in self._sockets.values())


class WebSocketNotifier:
    """Pushes {"topic", "payload"} messages to a user's open channels."""

    def __init__(self, registry: ConnectionRegistry, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._registry = registry
        self._loop = loop

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach the server event loop. Called once from the app lifespan."""
        self._loop = loop

    def send(self, login: str, topic: str, payload: dict) -> None:
        sockets = self._registry.connections(login)
        if not sockets:
            return
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning("Dropped %s for %s: no running event loop", topic, login)
            return
        message = {"topic": topic, "payload": payload}
        for websocket in sockets:
            future = asyncio.run_coroutine_threadsafe(websocket.send_json(message), loop)
            future.add_done_callback(_log_failure(login, topic))


def _log_failure(login: str, topic: str):
    def callback(future: Future) -> None:
        if future.cancelled():
            logger.warning("Delivery of %s to %s was cancelled", topic, login)
            return
        exc = future.exception()
        if exc is not None:
            logger.warning("Delivery of %s to %s failed: %s", topic, login, exc)

    return callback
