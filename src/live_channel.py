"""Per-user live notification channel over WebSockets.

Each authenticated connection joins its user's group; events are pushed to
every connection in the group (several tabs or devices per user). A user
with no open connection simply misses the push: the notification itself is
already stored and the next ``notification:sync`` reconciles the count.

Messages are JSON objects ``{"event": <name>, "data": <payload>}``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from fastapi import WebSocket, status

import auth
from errors import Unauthorized
from notification_service import SYNC_EVENT
from schemas import Principal

logger = logging.getLogger(__name__)


class ConnectionHub:
    """Groups live connections by user id and fans events out to them.

    Created once per process at application startup and handed to
    NotificationService as its broadcaster.
    """

    def __init__(self, unread_count: Callable[[int], int]):
        self._unread_count = unread_count
        self._groups: dict[int, set[WebSocket]] = {}
        self._owners: dict[WebSocket, int] = {}

    def connection_count(self, user_id: int) -> int:
        return len(self._groups.get(user_id, ()))

    async def connect(self, websocket: WebSocket, token: str | None) -> Principal | None:
        """Authenticate, accept and join *websocket*; then push ``notification:sync``.

        Returns the principal, or None after closing a connection whose token
        is missing, invalid or expired. A rejected socket is never accepted.
        """
        try:
            principal = auth.verify_token(token)
        except Unauthorized as e:
            logger.info("Rejected live connection: %s", e.message)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Unauthorized")
            return None

        await websocket.accept()
        self._groups.setdefault(principal.id, set()).add(websocket)
        self._owners[websocket] = principal.id
        logger.debug(
            "User %s connected (%d live connection(s)).",
            principal.id,
            self.connection_count(principal.id),
        )

        try:
            count = self._unread_count(principal.id)
            await websocket.send_json({"event": SYNC_EVENT, "data": {"unreadCount": count}})
        except Exception as e:
            logger.error("Failed to sync notifications for user %s: %s", principal.id, e)
        return principal

    def disconnect(self, websocket: WebSocket) -> None:
        user_id = self._owners.pop(websocket, None)
        if user_id is None:
            return
        group = self._groups.get(user_id)
        if group is not None:
            group.discard(websocket)
            if not group:
                del self._groups[user_id]

    async def emit_to_user(self, user_id: int, event: str, payload: dict[str, Any]) -> None:
        """Send *event* to every connection of *user_id*; no connections means no-op."""
        sockets = list(self._groups.get(user_id, ()))
        if not sockets:
            return
        message = {"event": event, "data": payload}
        results = await asyncio.gather(
            *(ws.send_json(message) for ws in sockets), return_exceptions=True
        )
        for ws, result in zip(sockets, results):
            if isinstance(result, BaseException):
                logger.info("Dropping dead connection of user %s: %s", user_id, result)
                self.disconnect(ws)

    async def close(self) -> None:
        """Close every open connection (process shutdown)."""
        sockets = list(self._owners)
        for ws in sockets:
            try:
                await ws.close(code=status.WS_1001_GOING_AWAY)
            except Exception as e:
                logger.debug("Close failed: %s", e)
            self.disconnect(ws)
