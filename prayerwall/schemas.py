"""
Pydantic schemas for the prayer wall API.

Field names are camelCase to match what the web frontend sends and reads.
"""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from prayerwall.models import MAX_NAME_LENGTH, MAX_TEXT_LENGTH


class LoginRequest(BaseModel):
    username: str = ""
    password: str = ""


class AdminUser(BaseModel):
    username: str
    role: str


class LoginResponse(BaseModel):
    success: bool
    token: str
    user: AdminUser


class StatusMessage(BaseModel):
    success: bool
    message: str


class CommentResponse(BaseModel):
    id: str
    author: str
    text: str
    timestamp: str


class DeletedCommentResponse(StatusMessage):
    comment: CommentResponse


class PrayerRequestPayload(BaseModel):
    """Public submission. ``request`` is checked by the store, not here."""

    name: Optional[str] = Field(default=None, max_length=MAX_NAME_LENGTH)
    request: Optional[str] = Field(default=None, max_length=MAX_TEXT_LENGTH)
    isAnonymous: Optional[bool] = None


class PrayerRequestUpdate(BaseModel):
    """Partial update; fields left out (or null) keep their stored value."""

    name: Optional[str] = Field(default=None, max_length=MAX_NAME_LENGTH)
    request: Optional[str] = Field(default=None, max_length=MAX_TEXT_LENGTH)
    status: Optional[str] = None
    isAnonymous: Optional[bool] = None


class PrayerRequestResponse(BaseModel):
    id: str
    name: str
    request: str
    isAnonymous: bool
    status: str
    createdAt: str
    updatedAt: str


class DeletedPrayerRequestResponse(StatusMessage):
    request: PrayerRequestResponse


class ClearedResponse(BaseModel):
    success: bool
    deletedCount: int


class HealthResponse(BaseModel):
    status: Literal["ok"]
    database: Literal["connected", "disconnected"]
    storage: Literal["durable", "memory"]
    connectedClients: int
    prayerRequestsCount: Optional[int] = None
    commentsCount: Optional[int] = None
