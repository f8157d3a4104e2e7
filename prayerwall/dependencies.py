"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from prayerwall.auth import SessionRegistry
from prayerwall.config import DEFAULT_ADMIN_PASSWORD, Settings
from prayerwall.db import DbClient, InMemoryDbClient, PostgresDbClient
from prayerwall.errors import AuthError, BackendUnavailableError
from prayerwall.models import PrayerStatus
from prayerwall.service import LiveFeed

logger = logging.getLogger(__name__)

SAMPLE_PRAYER_REQUESTS = (
    (
        {
            "name": "Sarah M.",
            "request": "Please pray for my brother's recovery from surgery. "
            "May God give him strength and healing.",
        },
        PrayerStatus.PENDING,
    ),
    (
        {
            "request": "Praying for peace and guidance during this difficult "
            "season in our family.",
            "isAnonymous": True,
        },
        PrayerStatus.PENDING,
    ),
    (
        {
            "name": "Michael T.",
            "request": "Please lift up our church leadership as they make "
            "important decisions for our community.",
        },
        PrayerStatus.ANSWERED,
    ),
)


def build_db_client(settings: Settings) -> DbClient:
    """
    Choose the store backend once, at startup.

    The durable backend is tried when a DATABASE_URL is configured. If it
    cannot be reached the in-memory backend serves every operation until the
    process exits: there is no retry and nothing written in the meantime is
    ever copied to the database.
    """
    if settings.use_in_memory_backends or not settings.database_url:
        logger.info("No durable backend configured; using in-memory storage")
        db: DbClient = InMemoryDbClient()
    else:
        try:
            db = PostgresDbClient(
                settings.database_url,
                connect_timeout=settings.database_connect_timeout_seconds,
                statement_timeout=settings.database_statement_timeout_seconds,
            )
            logger.info("Connected to durable backend")
        except BackendUnavailableError as exc:
            logger.warning(
                "%s. Falling back to in-memory storage for the lifetime of this "
                "process; records written now will not be migrated later.",
                exc,
            )
            db = InMemoryDbClient()

    if settings.seed_sample_requests and not db.durable:
        seed_sample_requests(db)
    return db


def seed_sample_requests(db: DbClient) -> None:
    for payload, status in SAMPLE_PRAYER_REQUESTS:
        record = db.prayer_requests.create(payload)
        if status is not PrayerStatus.PENDING:
            db.prayer_requests.update(record.id, {"status": status})
    logger.info("Seeded %d sample prayer requests", len(SAMPLE_PRAYER_REQUESTS))


def build_session_registry(settings: Settings) -> SessionRegistry:
    if settings.admin_password == DEFAULT_ADMIN_PASSWORD:
        logger.warning(
            "ADMIN_PASSWORD is not set; the demo admin password is in use"
        )
    return SessionRegistry(settings.admin_username, settings.admin_password)


def get_feed(request: Request) -> LiveFeed:
    return request.app.state.feed


def get_sessions(request: Request) -> SessionRegistry:
    return request.app.state.sessions


bearer_scheme = HTTPBearer(auto_error=False)


def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    return credentials.credentials if credentials else None


def require_admin(
    token: Optional[str] = Depends(get_bearer_token),
    sessions: SessionRegistry = Depends(get_sessions),
) -> str:
    """Resolve the caller's admin token or fail with 401 (missing) / 403 (unknown)."""
    if not token:
        raise AuthError("Access token required")
    if not sessions.validate(token):
        raise AuthError("Invalid or expired token", status_code=403)
    return token
