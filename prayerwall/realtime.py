"""
Push channel: live WebSocket connections and the change broadcaster.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from enum import Enum
from typing import Any, Dict

from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

# Wire event names
INITIAL_COMMENTS = "initial-comments"
NEW_COMMENT = "new-comment"
COMMENT_DELETED = "comment-deleted"
PRAYER_REQUEST_UPDATED = "prayer-request-updated"


class EventKind(str, Enum):
    COMMENT_CREATED = "comment-created"
    COMMENT_DELETED = "comment-deleted"
    PRAYER_REQUEST_ADDED = "prayer-request-added"
    PRAYER_REQUEST_UPDATED = "prayer-request-updated"
    PRAYER_REQUEST_DELETED = "prayer-request-deleted"
    PRAYER_REQUEST_CLEARED = "prayer-request-cleared"


def message(event: str, data: Any) -> dict:
    return {"event": event, "data": data}


def render_event(kind: EventKind, payload: Any) -> dict:
    """
    Turn a confirmed mutation into the message clients receive.

    ``payload`` is the stored record for every kind except
    ``PRAYER_REQUEST_CLEARED``, where it is the number of removed records.
    """
    if kind is EventKind.COMMENT_CREATED:
        return message(NEW_COMMENT, payload.as_dict())
    if kind is EventKind.COMMENT_DELETED:
        return message(COMMENT_DELETED, {"id": payload.id})
    if kind is EventKind.PRAYER_REQUEST_ADDED:
        return message(
            PRAYER_REQUEST_UPDATED, {"type": "added", "request": payload.as_dict()}
        )
    if kind is EventKind.PRAYER_REQUEST_UPDATED:
        return message(
            PRAYER_REQUEST_UPDATED, {"type": "updated", "request": payload.as_dict()}
        )
    if kind is EventKind.PRAYER_REQUEST_DELETED:
        return message(
            PRAYER_REQUEST_UPDATED, {"type": "deleted", "requestId": payload.id}
        )
    if kind is EventKind.PRAYER_REQUEST_CLEARED:
        return message(PRAYER_REQUEST_UPDATED, {"type": "deleted-all", "count": payload})
    raise ValueError(f"Unknown event kind: {kind}")


class ConnectionManager:
    """Tracks live push-channel connections by a generated connection id."""

    def __init__(self, send_timeout: float = 5.0):
        self.active_connections: Dict[str, WebSocket] = {}
        self.send_timeout = send_timeout

    @property
    def count(self) -> int:
        return len(self.active_connections)

    async def accept(self, websocket: WebSocket) -> str:
        await websocket.accept()
        return uuid.uuid4().hex

    def register(self, connection_id: str, websocket: WebSocket) -> None:
        self.active_connections[connection_id] = websocket
        logger.info("Client connected: %s", connection_id)

    def disconnect(self, connection_id: str) -> None:
        if self.active_connections.pop(connection_id, None) is not None:
            logger.info("Client disconnected: %s", connection_id)

    async def _send(self, connection_id: str, websocket: WebSocket, payload: dict) -> bool:
        try:
            await asyncio.wait_for(websocket.send_json(payload), self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Dropping connection %s: send took longer than %.1fs",
                connection_id,
                self.send_timeout,
            )
            return False
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            logger.warning(
                "Dropping connection %s after failed send: %s", connection_id, exc
            )
            return False
        return True

    async def send_to(self, connection_id: str, payload: dict) -> bool:
        """Send to one connection only; a failed send drops it."""
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            return False
        if await self._send(connection_id, websocket, payload):
            return True
        self.disconnect(connection_id)
        return False

    async def broadcast(self, payload: dict) -> int:
        """Send to every live connection, sender included. Returns deliveries."""
        targets = list(self.active_connections.items())
        results = await asyncio.gather(
            *(
                self._send(connection_id, websocket, payload)
                for connection_id, websocket in targets
            )
        )
        for (connection_id, _), sent in zip(targets, results):
            if not sent:
                self.disconnect(connection_id)
        return sum(results)


class ChangeBroadcaster:
    """Publishes typed change events to every connected viewer."""

    def __init__(self, connections: ConnectionManager):
        self.connections = connections

    async def publish(self, kind: EventKind, payload: Any) -> int:
        delivered = await self.connections.broadcast(render_event(kind, payload))
        logger.debug("Published %s to %d client(s)", kind.value, delivered)
        return delivered
