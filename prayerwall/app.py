"""
FastAPI application entry point for the prayer wall backend.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from prayerwall.config import Settings, get_settings
from prayerwall.db import DbClient
from prayerwall.dependencies import build_db_client, build_session_registry
from prayerwall.errors import AuthError, PrayerWallError
from prayerwall.realtime import ConnectionManager
from prayerwall.routes import root_router, router
from prayerwall.service import LiveFeed

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    logger.info("Shutting down; closing the record store")
    app.state.db.close()


def _describe_validation_error(exc: RequestValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())[1:])
        problems.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(problems) or "Invalid request"


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PrayerWallError)
    async def handle_prayer_wall_error(request: Request, exc: PrayerWallError):
        headers = None
        if isinstance(exc, AuthError) and exc.status_code == 401:
            headers = {"WWW-Authenticate": "Bearer"}
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(
        request: Request, exc: RequestValidationError
    ):
        return JSONResponse(
            status_code=400, content={"error": _describe_validation_error(exc)}
        )


def create_app(
    settings: Optional[Settings] = None, db: Optional[DbClient] = None
) -> FastAPI:
    """
    Build the app and its process-wide state.

    The store backend is chosen here, once; pass ``db`` to skip selection
    (tests do).
    """
    settings = settings or get_settings()
    app = FastAPI(title="Prayer Wall Backend", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    connections = ConnectionManager(
        send_timeout=settings.push_send_timeout_seconds
    )
    app.state.settings = settings
    app.state.db = db if db is not None else build_db_client(settings)
    app.state.sessions = build_session_registry(settings)
    app.state.connections = connections
    app.state.feed = LiveFeed(
        app.state.db, connections, comment_limit=settings.live_comment_limit
    )

    register_error_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)
    app.include_router(root_router)
    return app
