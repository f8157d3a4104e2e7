"""Admin session tokens for the prayer wall APIs."""

from __future__ import annotations

import logging
import secrets
import threading

from prayerwall.errors import AuthError

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


class SessionRegistry:
    """
    Issues and validates opaque admin session tokens.

    There is exactly one admin identity, so a token is a capability: holding
    an active one is the whole proof. Tokens never expire; they stay valid
    until revoked or the process restarts.
    """

    def __init__(self, username: str, password: str):
        self.username = username
        self._password = password
        self._active: set[str] = set()
        self._lock = threading.Lock()

    def _credentials_match(self, username: str, password: str) -> bool:
        # Both comparisons always run.
        user_ok = secrets.compare_digest(
            username.encode("utf-8"), self.username.encode("utf-8")
        )
        password_ok = secrets.compare_digest(
            password.encode("utf-8"), self._password.encode("utf-8")
        )
        return user_ok and password_ok

    def issue(self, username: str, password: str) -> str:
        if not self._credentials_match(username or "", password or ""):
            logger.info("Rejected admin login for %r", username)
            raise AuthError("Invalid credentials")
        with self._lock:
            token = secrets.token_urlsafe(32)
            while token in self._active:
                token = secrets.token_urlsafe(32)
            self._active.add(token)
        logger.info("Issued admin session token")
        return token

    def validate(self, token: str | None) -> bool:
        if not token:
            return False
        with self._lock:
            return token in self._active

    def revoke(self, token: str | None) -> None:
        with self._lock:
            self._active.discard(token)

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)
