from __future__ import annotations

import asyncio
import logging
from threading import RLock
from typing import Any, Dict, List, Set, Tuple

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

DEFAULT_MAX_PENDING = 100

_Subscriber = Tuple[asyncio.AbstractEventLoop, "asyncio.Queue[Dict[str, Any]]"]


# PUBLIC_INTERFACE
class ConnectionHub:
    """
    Per-user fan-out of live-update messages to connected WebSocket clients.

    `publish` may be called from any thread (the reminder sweep runs on a scheduler
    thread); messages are handed to each subscriber's event loop thread-safely.
    Each connection buffers at most `max_pending` messages; when a slow client falls
    that far behind, its oldest pending message is dropped.
    """

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self._lock = RLock()
        self._max_pending = max_pending
        self._subscribers: Dict[str, Set[_Subscriber]] = {}

    def subscribe(self, user_id: str) -> _Subscriber:
        subscriber: _Subscriber = (asyncio.get_running_loop(), asyncio.Queue(maxsize=self._max_pending))
        with self._lock:
            self._subscribers.setdefault(user_id, set()).add(subscriber)
        return subscriber

    def unsubscribe(self, user_id: str, subscriber: _Subscriber) -> None:
        with self._lock:
            subs = self._subscribers.get(user_id)
            if not subs:
                return
            subs.discard(subscriber)
            if not subs:
                del self._subscribers[user_id]

    def connection_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, ()))

    def publish(self, user_id: str, message: Dict[str, Any]) -> int:
        """Queue `message` for every connection of `user_id`. Return how many were reached."""
        with self._lock:
            targets: List[_Subscriber] = list(self._subscribers.get(user_id, ()))
        delivered = 0
        for loop, queue in targets:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(self._offer, user_id, queue, message)
            delivered += 1
        return delivered

    def _offer(self, user_id: str, queue: "asyncio.Queue[Dict[str, Any]]", message: Dict[str, Any]) -> None:
        # Runs on the subscriber's loop, the only consumer of `queue`
        if queue.full():
            dropped = queue.get_nowait()
            logger.warning(
                "Live channel for user %s is %d message(s) behind; dropped %s",
                user_id, queue.maxsize, dropped.get("type"),
            )
        queue.put_nowait(message)


hub = ConnectionHub()


# PUBLIC_INTERFACE
def get_hub() -> ConnectionHub:
    """Return the process-wide connection hub."""
    return hub


# PUBLIC_INTERFACE
@router.websocket("/ws")
async def live_updates(websocket: WebSocket, user_id: str = Query(..., min_length=1)) -> None:
    """
    Live channel for one user. Sends {"type": "connected"} once subscribed, then relays
    every published message as JSON until the client disconnects.
    """
    await websocket.accept()
    channel = get_hub()
    subscriber = channel.subscribe(user_id)
    logger.info("User %s joined live updates", user_id)
    _, queue = subscriber

    async def relay() -> None:
        while True:
            await websocket.send_json(await queue.get())

    async def drain() -> None:
        # Client messages are not used; reading detects the disconnect
        while True:
            await websocket.receive_text()

    tasks = [asyncio.create_task(relay()), asyncio.create_task(drain())]
    try:
        await websocket.send_json({"type": "connected", "user_id": user_id})
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            error = task.exception()
            if error is not None and not isinstance(error, WebSocketDisconnect):
                logger.warning("Live channel for user %s closed: %r", user_id, error)
    except WebSocketDisconnect:
        pass
    finally:
        for task in tasks:
            task.cancel()
        channel.unsubscribe(user_id, subscriber)
        logger.info("User %s left live updates", user_id)
