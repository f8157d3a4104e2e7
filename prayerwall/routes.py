"""
HTTP and WebSocket routes for the prayer wall backend.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket

from prayerwall.auth import ADMIN_ROLE, SessionRegistry
from prayerwall.dependencies import get_feed, get_sessions, require_admin
from prayerwall.models import PrayerStatus
from prayerwall.schemas import (
    AdminUser,
    ClearedResponse,
    CommentResponse,
    DeletedCommentResponse,
    DeletedPrayerRequestResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    PrayerRequestPayload,
    PrayerRequestResponse,
    PrayerRequestUpdate,
    StatusMessage,
)
from prayerwall.service import LiveFeed

logger = logging.getLogger(__name__)

router = APIRouter()
root_router = APIRouter()


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginRequest, sessions: SessionRegistry = Depends(get_sessions)):
    token = sessions.issue(payload.username, payload.password)
    return LoginResponse(
        success=True,
        token=token,
        user=AdminUser(username=sessions.username, role=ADMIN_ROLE),
    )


@router.post("/logout", response_model=StatusMessage)
def logout(
    token: str = Depends(require_admin),
    sessions: SessionRegistry = Depends(get_sessions),
):
    sessions.revoke(token)
    return StatusMessage(success=True, message="Logged out successfully")


@router.get("/prayer-requests", response_model=list[PrayerRequestResponse])
async def list_prayer_requests(
    status: Optional[str] = Query(None, description="Only return this status"),
    _: str = Depends(require_admin),
    feed: LiveFeed = Depends(get_feed),
):
    wanted = PrayerStatus.parse(status) if status else None
    records = await feed.list_prayer_requests(wanted)
    return [record.as_dict() for record in records]


@router.get("/prayer-requests/{request_id}", response_model=PrayerRequestResponse)
async def get_prayer_request(
    request_id: str,
    _: str = Depends(require_admin),
    feed: LiveFeed = Depends(get_feed),
):
    record = await feed.get_prayer_request(request_id)
    return record.as_dict()


@router.post(
    "/prayer-requests", response_model=PrayerRequestResponse, status_code=201
)
async def submit_prayer_request(
    payload: PrayerRequestPayload, feed: LiveFeed = Depends(get_feed)
):
    """
    Public submission. Status is always pending; anonymous submissions are
    stored under the name "Anonymous".
    """
    record = await feed.add_prayer_request(payload.model_dump(exclude_none=True))
    return record.as_dict()


@router.put("/prayer-requests/{request_id}", response_model=PrayerRequestResponse)
async def update_prayer_request(
    request_id: str,
    payload: PrayerRequestUpdate,
    _: str = Depends(require_admin),
    feed: LiveFeed = Depends(get_feed),
):
    record = await feed.update_prayer_request(
        request_id, payload.model_dump(exclude_none=True)
    )
    return record.as_dict()


@router.delete(
    "/prayer-requests/{request_id}", response_model=DeletedPrayerRequestResponse
)
async def delete_prayer_request(
    request_id: str,
    _: str = Depends(require_admin),
    feed: LiveFeed = Depends(get_feed),
):
    record = await feed.remove_prayer_request(request_id)
    return {
        "success": True,
        "message": "Prayer request deleted",
        "request": record.as_dict(),
    }


@router.delete("/prayer-requests", response_model=ClearedResponse)
async def delete_all_prayer_requests(
    _: str = Depends(require_admin), feed: LiveFeed = Depends(get_feed)
):
    removed = await feed.clear_prayer_requests()
    logger.info("Cleared %d prayer requests", removed)
    return ClearedResponse(success=True, deletedCount=removed)


@router.get("/comments", response_model=list[CommentResponse])
async def list_comments(
    _: str = Depends(require_admin), feed: LiveFeed = Depends(get_feed)
):
    records = await feed.list_comments()
    return [record.as_dict() for record in records]


@router.delete("/comments/{comment_id}", response_model=DeletedCommentResponse)
async def delete_comment(
    comment_id: str,
    _: str = Depends(require_admin),
    feed: LiveFeed = Depends(get_feed),
):
    record = await feed.remove_comment(comment_id)
    return {"success": True, "message": "Comment deleted", "comment": record.as_dict()}


@root_router.get("/health", response_model=HealthResponse)
async def health(feed: LiveFeed = Depends(get_feed)):
    return await feed.health()


@root_router.websocket("/ws")
async def live_comments(websocket: WebSocket):
    """
    Push channel. Sends ``initial-comments`` on connect, accepts
    ``new-comment`` frames and relays every change event.
    """
    feed: LiveFeed = websocket.app.state.feed
    connection_id = await feed.open_connection(websocket)
    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                logger.debug("Socket %s closed by client", connection_id)
                break
            await feed.handle_client_message(connection_id, frame.get("text"))
    finally:
        feed.close_connection(connection_id)
