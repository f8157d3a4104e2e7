"""
Live feed: the single path through which records change.

Every mutation is persisted first and only then published, under one
asyncio lock, so all viewers see events in the order the store confirmed
them. Blocking store calls run on the thread pool.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Optional

from fastapi import WebSocket
from starlette.concurrency import run_in_threadpool

from prayerwall.db import DbClient
from prayerwall.errors import PrayerWallError
from prayerwall.models import CommentRecord, PrayerRequestRecord, PrayerStatus
from prayerwall.realtime import (
    INITIAL_COMMENTS,
    NEW_COMMENT,
    ChangeBroadcaster,
    ConnectionManager,
    EventKind,
    message,
)

logger = logging.getLogger(__name__)


class LiveFeed:
    def __init__(
        self,
        db: DbClient,
        connections: ConnectionManager,
        *,
        comment_limit: int = 50,
    ):
        self.db = db
        self.connections = connections
        self.broadcaster = ChangeBroadcaster(connections)
        self.comment_limit = comment_limit
        self._write_lock = asyncio.Lock()

    async def _mutate(self, kind: EventKind, operation, *args) -> Any:
        async with self._write_lock:
            result = await run_in_threadpool(operation, *args)
            await self.broadcaster.publish(kind, result)
        return result

    # Reads

    async def recent_comments(self) -> list[CommentRecord]:
        return await run_in_threadpool(self.db.comments.list, self.comment_limit)

    async def list_comments(self) -> list[CommentRecord]:
        return await run_in_threadpool(self.db.comments.list)

    async def list_prayer_requests(
        self, status: Optional[PrayerStatus] = None
    ) -> list[PrayerRequestRecord]:
        where = {"status": status} if status is not None else None
        return await run_in_threadpool(self.db.prayer_requests.list, None, where)

    async def get_prayer_request(self, request_id: str) -> PrayerRequestRecord:
        return await run_in_threadpool(self.db.prayer_requests.get, request_id)

    # Mutations

    async def add_comment(self, payload: Mapping[str, Any]) -> CommentRecord:
        return await self._mutate(
            EventKind.COMMENT_CREATED, self.db.comments.create, payload
        )

    async def remove_comment(self, comment_id: str) -> CommentRecord:
        return await self._mutate(
            EventKind.COMMENT_DELETED, self.db.comments.delete, comment_id
        )

    async def add_prayer_request(
        self, payload: Mapping[str, Any]
    ) -> PrayerRequestRecord:
        return await self._mutate(
            EventKind.PRAYER_REQUEST_ADDED, self.db.prayer_requests.create, payload
        )

    async def update_prayer_request(
        self, request_id: str, changes: Mapping[str, Any]
    ) -> PrayerRequestRecord:
        return await self._mutate(
            EventKind.PRAYER_REQUEST_UPDATED,
            self.db.prayer_requests.update,
            request_id,
            changes,
        )

    async def remove_prayer_request(self, request_id: str) -> PrayerRequestRecord:
        return await self._mutate(
            EventKind.PRAYER_REQUEST_DELETED,
            self.db.prayer_requests.delete,
            request_id,
        )

    async def clear_prayer_requests(self) -> int:
        return await self._mutate(
            EventKind.PRAYER_REQUEST_CLEARED, self.db.prayer_requests.delete_all
        )

    # Connection lifecycle

    async def open_connection(self, websocket: WebSocket) -> str:
        """
        Accept a viewer and send it the current comment snapshot.

        The snapshot is read and the connection registered under the write
        lock, so the viewer neither misses nor double-receives a comment
        published around the time it joins.
        """
        connection_id = await self.connections.accept(websocket)
        async with self._write_lock:
            snapshot = await self.recent_comments()
            self.connections.register(connection_id, websocket)
            await self.connections.send_to(
                connection_id,
                message(INITIAL_COMMENTS, [comment.as_dict() for comment in snapshot]),
            )
        return connection_id

    def close_connection(self, connection_id: str) -> None:
        self.connections.disconnect(connection_id)

    async def handle_client_message(
        self, connection_id: str, raw: Optional[str]
    ) -> None:
        """
        Handle one frame from a viewer. Bad frames are logged and dropped.

        ``raw`` is None for binary frames, which the channel does not use.
        """
        if raw is None:
            logger.warning("Ignoring binary frame from %s", connection_id)
            return
        try:
            incoming = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring malformed frame from %s", connection_id)
            return
        if not isinstance(incoming, dict) or incoming.get("event") != NEW_COMMENT:
            logger.warning("Ignoring unsupported frame from %s", connection_id)
            return
        data = incoming.get("data")
        if not isinstance(data, dict):
            logger.warning("Ignoring comment without data from %s", connection_id)
            return

        try:
            comment = await self.add_comment(data)
        except PrayerWallError as exc:
            logger.warning("Rejected comment from %s: %s", connection_id, exc)
            return
        logger.info("New comment from %s: %s", comment.author, comment.text)

    # Health

    async def health(self) -> dict:
        database_connected = self.db.durable and await run_in_threadpool(self.db.ping)
        prayer_count: Optional[int] = None
        comment_count: Optional[int] = None
        if database_connected or not self.db.durable:
            prayer_count = await run_in_threadpool(self.db.prayer_requests.count)
            comment_count = await run_in_threadpool(self.db.comments.count)
        return {
            "status": "ok",
            "database": "connected" if database_connected else "disconnected",
            "storage": "durable" if self.db.durable else "memory",
            "connectedClients": self.connections.count,
            "prayerRequestsCount": prayer_count,
            "commentsCount": comment_count,
        }
