"""
Error taxonomy shared by the store, the session registry and the HTTP layer.
"""

from __future__ import annotations


class PrayerWallError(Exception):
    """Base error; ``status_code`` is the HTTP status it maps to."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class ValidationError(PrayerWallError):
    """A required field is missing or a supplied value is out of range."""

    status_code = 400


class AuthError(PrayerWallError):
    """Bad credentials (401) or a missing/unknown session token (401/403)."""

    status_code = 401


class NotFoundError(PrayerWallError):
    status_code = 404


class BackendUnavailableError(PrayerWallError):
    """
    The durable backend could not be reached at startup.

    Never surfaced to a request: it only triggers the in-memory fallback.
    """

    status_code = 503


class StorageError(PrayerWallError):
    """A durable-backend call failed after startup; only that operation fails."""

    status_code = 503
