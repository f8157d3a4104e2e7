"""
Record store abstraction: a SQLAlchemy-backed durable client and an
in-memory fallback that behave the same behind one protocol.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Protocol

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    func,
    select,
    text,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from prayerwall.errors import BackendUnavailableError, StorageError, ValidationError
from prayerwall.models import COMMENT, PRAYER_REQUEST, EntityKind

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class Repository(Protocol):
    """CRUD over one entity kind. Lists are newest first."""

    kind: EntityKind

    def create(self, payload: Mapping[str, Any]) -> Any:
        ...

    def get(self, record_id: str) -> Any:
        ...

    def list(
        self,
        limit: Optional[int] = None,
        where: Optional[Mapping[str, Any]] = None,
    ) -> list:
        ...

    def update(self, record_id: str, changes: Mapping[str, Any]) -> Any:
        ...

    def delete(self, record_id: str) -> Any:
        ...

    def delete_all(self) -> int:
        ...

    def count(self) -> int:
        ...


class DbClient(Protocol):
    """Interface for database access."""

    durable: bool
    comments: Repository
    prayer_requests: Repository

    def ping(self) -> bool:
        ...

    def close(self) -> None:
        ...


def _new_id() -> str:
    return uuid.uuid4().hex


def _check_where(kind: EntityKind, where: Optional[Mapping[str, Any]]) -> dict:
    if not where:
        return {}
    allowed = kind.record_type.__dataclass_fields__
    for key in where:
        if key not in allowed:
            raise ValidationError(f"Cannot filter {kind.label.lower()}s by {key!r}")
    return dict(where)


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


class InMemoryCollection:
    """Dict-backed collection; every read-modify-write runs under a lock."""

    def __init__(self, kind: EntityKind, clock: Clock = time.time):
        self.kind = kind
        self.clock = clock
        self.records: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def create(self, payload: Mapping[str, Any]) -> Any:
        with self._lock:
            record = self.kind.build(payload, _new_id(), self.clock())
            self.records[record.id] = record
        return record

    def get(self, record_id: str) -> Any:
        with self._lock:
            record = self.records.get(record_id)
        if record is None:
            raise self.kind.not_found()
        return record

    def list(
        self,
        limit: Optional[int] = None,
        where: Optional[Mapping[str, Any]] = None,
    ) -> list:
        where = _check_where(self.kind, where)
        with self._lock:
            records = list(self.records.values())
        if where:
            records = [
                record
                for record in records
                if all(getattr(record, key) == value for key, value in where.items())
            ]
        # Reversing first lets the stable sort put later inserts ahead on ties.
        records = sorted(
            reversed(records),
            key=lambda record: getattr(record, self.kind.created_field),
            reverse=True,
        )
        if limit is not None:
            records = records[:limit]
        return records

    def update(self, record_id: str, changes: Mapping[str, Any]) -> Any:
        with self._lock:
            current = self.records.get(record_id)
            if current is None:
                raise self.kind.not_found()
            record = self.kind.patch(current, changes, self.clock())
            self.records[record_id] = record
        return record

    def delete(self, record_id: str) -> Any:
        with self._lock:
            record = self.records.pop(record_id, None)
        if record is None:
            raise self.kind.not_found()
        return record

    def delete_all(self) -> int:
        with self._lock:
            removed = len(self.records)
            self.records.clear()
        return removed

    def count(self) -> int:
        with self._lock:
            return len(self.records)


class InMemoryDbClient:
    """
    Simple in-memory database for development, tests and the startup
    fallback. Contents live for the process lifetime only.
    """

    durable = False

    def __init__(self, clock: Clock = time.time):
        self.comments = InMemoryCollection(COMMENT, clock)
        self.prayer_requests = InMemoryCollection(PRAYER_REQUEST, clock)

    def ping(self) -> bool:
        return True

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.comments.delete_all()
        self.prayer_requests.delete_all()

    def close(self) -> None:
        self.reset()


class SqlCollection:
    """One entity kind stored in one table."""

    def __init__(
        self,
        kind: EntityKind,
        row_type: type,
        session_factory: sessionmaker,
        clock: Clock = time.time,
    ):
        self.kind = kind
        self.row_type = row_type
        self.Session = session_factory
        self.clock = clock

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with self.Session() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.exception("Database operation on %s failed", self.row_type.__tablename__)
            raise StorageError("Database operation failed") from exc

    def _to_record(self, row: Any) -> Any:
        columns = {
            column.key: getattr(row, column.key)
            for column in self.row_type.__table__.columns
            if column.key != "seq"
        }
        columns["id"] = str(row.id)
        return self.kind.record_type.from_columns(columns)

    def _find(self, session: Session, record_id: str, *, lock: bool = False) -> Any:
        stmt = select(self.row_type).where(self.row_type.id == record_id)
        if lock:
            stmt = stmt.with_for_update()
        row = session.execute(stmt).scalar_one_or_none()
        if row is None:
            raise self.kind.not_found()
        return row

    def create(self, payload: Mapping[str, Any]) -> Any:
        record = self.kind.build(payload, _new_id(), self.clock())
        with self._session() as session:
            session.add(self.row_type(**record.to_columns()))
            session.commit()
        return record

    def get(self, record_id: str) -> Any:
        with self._session() as session:
            return self._to_record(self._find(session, record_id))

    def list(
        self,
        limit: Optional[int] = None,
        where: Optional[Mapping[str, Any]] = None,
    ) -> list:
        where = _check_where(self.kind, where)
        created = getattr(self.row_type, self.kind.created_field)
        # seq breaks timestamp ties so the later insert lists first.
        stmt = select(self.row_type).order_by(
            created.desc(), self.row_type.seq.desc()
        )
        for key, value in where.items():
            stmt = stmt.where(getattr(self.row_type, key) == _column_value(value))
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as session:
            rows = session.execute(stmt).scalars().all()
            return [self._to_record(row) for row in rows]

    def update(self, record_id: str, changes: Mapping[str, Any]) -> Any:
        with self._session() as session:
            row = self._find(session, record_id, lock=True)
            record = self.kind.patch(self._to_record(row), changes, self.clock())
            for key, value in record.to_columns().items():
                if key != "id":
                    setattr(row, key, value)
            session.commit()
            return record

    def delete(self, record_id: str) -> Any:
        with self._session() as session:
            row = self._find(session, record_id)
            record = self._to_record(row)
            session.delete(row)
            session.commit()
            return record

    def delete_all(self) -> int:
        with self._session() as session:
            result = session.execute(delete(self.row_type))
            session.commit()
            return result.rowcount or 0

    def count(self) -> int:
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(self.row_type)) or 0


def _connect_args(
    database_url: str,
    connect_timeout: float,
    statement_timeout: Optional[float],
) -> dict:
    backend = make_url(database_url).get_backend_name()
    if backend == "postgresql":
        args: dict[str, Any] = {"connect_timeout": max(1, round(connect_timeout))}
        if statement_timeout:
            args["options"] = f"-c statement_timeout={int(statement_timeout * 1000)}"
        return args
    if backend == "sqlite":
        return {"timeout": connect_timeout}
    return {}


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    Construction creates the schema, which also proves the database is
    reachable; any failure is raised as ``BackendUnavailableError``.
    """

    durable = True

    def __init__(
        self,
        database_url: str,
        *,
        connect_timeout: float = 5.0,
        statement_timeout: Optional[float] = None,
        clock: Clock = time.time,
    ):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        try:
            self.engine = create_engine(
                database_url,
                pool_pre_ping=True,
                pool_recycle=1800,
                connect_args=_connect_args(
                    database_url, connect_timeout, statement_timeout
                ),
            )
            self.Session = sessionmaker(
                bind=self.engine, class_=Session, expire_on_commit=False
            )
            Base.metadata.create_all(self.engine)
        except (SQLAlchemyError, ImportError) as exc:
            raise BackendUnavailableError(
                f"Could not connect to the database: {exc}"
            ) from exc

        self.comments = SqlCollection(COMMENT, CommentRow, self.Session, clock)
        self.prayer_requests = SqlCollection(
            PRAYER_REQUEST, PrayerRequestRow, self.Session, clock
        )

    def ping(self) -> bool:
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Database ping failed", exc_info=True)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


Base = declarative_base()


class CommentRow(Base):
    __tablename__ = "comments"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), unique=True, nullable=False)
    author = Column(String, nullable=False, default="Anonymous")
    text = Column(Text, nullable=False)
    timestamp = Column(Float, nullable=False, index=True)


class PrayerRequestRow(Base):
    __tablename__ = "prayer_requests"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(32), unique=True, nullable=False)
    name = Column(String, nullable=False, default="Anonymous")
    request = Column(Text, nullable=False)
    is_anonymous = Column(Boolean, nullable=False, default=False)
    status = Column(String(16), nullable=False, default="pending", index=True)
    created_at = Column(Float, nullable=False, index=True)
    updated_at = Column(Float, nullable=False)
