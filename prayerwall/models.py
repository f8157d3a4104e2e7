"""
Entity records and the per-kind validation/shaping rules.

Both store backends build and patch records through the ``EntityKind``
descriptors defined here, so a record looks the same whichever backend
produced it.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping

from prayerwall.errors import NotFoundError, ValidationError

ANONYMOUS = "Anonymous"
MAX_TEXT_LENGTH = 5000
MAX_NAME_LENGTH = 200


class PrayerStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    ANSWERED = "answered"
    ARCHIVED = "archived"

    @classmethod
    def parse(cls, value: Any) -> "PrayerStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as exc:
            allowed = ", ".join(status.value for status in cls)
            raise ValidationError(
                f"Invalid status {value!r}; expected one of: {allowed}"
            ) from exc


def format_timestamp(value: float) -> str:
    """Render epoch seconds as ISO-8601 UTC with millisecond precision."""
    moment = datetime.fromtimestamp(value, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class CommentRecord:
    id: str
    text: str
    author: str = ANONYMOUS
    timestamp: float = field(default_factory=lambda: time.time())

    @property
    def created(self) -> float:
        return self.timestamp

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "author": self.author,
            "text": self.text,
            "timestamp": format_timestamp(self.timestamp),
        }

    def to_columns(self) -> dict:
        return asdict(self)

    @classmethod
    def from_columns(cls, columns: Mapping[str, Any]) -> "CommentRecord":
        return cls(**columns)


@dataclass(frozen=True)
class PrayerRequestRecord:
    id: str
    request: str
    name: str = ANONYMOUS
    is_anonymous: bool = False
    status: PrayerStatus = PrayerStatus.PENDING
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    @property
    def created(self) -> float:
        return self.created_at

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "request": self.request,
            "isAnonymous": self.is_anonymous,
            "status": self.status.value,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    def to_columns(self) -> dict:
        columns = asdict(self)
        columns["status"] = self.status.value
        return columns

    @classmethod
    def from_columns(cls, columns: Mapping[str, Any]) -> "PrayerRequestRecord":
        values = dict(columns)
        values["status"] = PrayerStatus.parse(values["status"])
        return cls(**values)


def _has_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _required_text(payload: Mapping[str, Any], key: str, label: str) -> str:
    value = payload.get(key)
    if not _has_text(value):
        raise ValidationError(f"{label} is required")
    if len(value) > MAX_TEXT_LENGTH:
        raise ValidationError(
            f"{label} must be at most {MAX_TEXT_LENGTH} characters"
        )
    return value


def _display_name(value: Any) -> str:
    if not _has_text(value):
        return ANONYMOUS
    if len(value) > MAX_NAME_LENGTH:
        raise ValidationError(f"Name must be at most {MAX_NAME_LENGTH} characters")
    return value


def _flag(payload: Mapping[str, Any], key: str, default: bool = False) -> bool:
    value = payload.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean")
    return value


def build_comment(
    payload: Mapping[str, Any], record_id: str, now: float
) -> CommentRecord:
    return CommentRecord(
        id=record_id,
        text=_required_text(payload, "text", "Comment text"),
        author=_display_name(payload.get("author")),
        timestamp=now,
    )


def patch_comment(
    record: CommentRecord, changes: Mapping[str, Any], now: float
) -> CommentRecord:
    # Comments carry no modification instant; ``now`` is unused.
    updates: dict[str, Any] = {}
    if changes.get("text") is not None:
        updates["text"] = _required_text(changes, "text", "Comment text")
    if changes.get("author") is not None:
        updates["author"] = _display_name(changes["author"])
    return replace(record, **updates)


def build_prayer_request(
    payload: Mapping[str, Any], record_id: str, now: float
) -> PrayerRequestRecord:
    """
    Shape a public submission. Status always starts as pending and the
    name is masked when the submitter asked to stay anonymous.
    """
    request = _required_text(payload, "request", "Prayer request text")
    is_anonymous = _flag(payload, "isAnonymous")
    name = ANONYMOUS if is_anonymous else _display_name(payload.get("name"))
    return PrayerRequestRecord(
        id=record_id,
        request=request,
        name=name,
        is_anonymous=is_anonymous,
        status=PrayerStatus.PENDING,
        created_at=now,
        updated_at=now,
    )


def patch_prayer_request(
    record: PrayerRequestRecord, changes: Mapping[str, Any], now: float
) -> PrayerRequestRecord:
    """
    Apply a partial update. ``None`` (or a missing key) leaves a field
    untouched; an explicit empty ``name`` resets it to Anonymous, an empty
    ``request`` is rejected.
    """
    updates: dict[str, Any] = {"updated_at": now}
    if changes.get("request") is not None:
        updates["request"] = _required_text(changes, "request", "Prayer request text")
    if changes.get("name") is not None:
        if not isinstance(changes["name"], str):
            raise ValidationError("name must be a string")
        updates["name"] = _display_name(changes["name"])
    if changes.get("status") is not None:
        updates["status"] = PrayerStatus.parse(changes["status"])
    if changes.get("isAnonymous") is not None:
        updates["is_anonymous"] = _flag(changes, "isAnonymous")

    patched = replace(record, **updates)
    if patched.is_anonymous and patched.name != ANONYMOUS:
        patched = replace(patched, name=ANONYMOUS)
    return patched


@dataclass(frozen=True)
class EntityKind:
    """How one entity kind is built from a payload and patched."""

    name: str
    label: str
    record_type: type
    build: Callable[[Mapping[str, Any], str, float], Any]
    patch: Callable[[Any, Mapping[str, Any], float], Any]
    created_field: str

    def not_found(self) -> NotFoundError:
        return NotFoundError(f"{self.label} not found")


COMMENT = EntityKind(
    name="comment",
    label="Comment",
    record_type=CommentRecord,
    build=build_comment,
    patch=patch_comment,
    created_field="timestamp",
)

PRAYER_REQUEST = EntityKind(
    name="prayer_request",
    label="Prayer request",
    record_type=PrayerRequestRecord,
    build=build_prayer_request,
    patch=patch_prayer_request,
    created_field="created_at",
)
