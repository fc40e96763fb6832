"""Time and SQLite helpers shared by the conversation store."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from sqlmodel import create_engine


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def from_iso(value: str) -> datetime:
    """Parse an ISO timestamp; naive values are read as UTC."""

    return to_utc_aware(datetime.fromisoformat(value))


def to_utc_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_naive_utc(value: datetime) -> datetime:
    """SQLite stores timestamps without offset; keep them in UTC."""

    if value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


@dataclass(frozen=True, slots=True)
class SqlitePolicy:
    """Per-connection pragmas for the bridge database."""

    busy_timeout_ms: int = 5_000
    journal_mode: str = "WAL"
    synchronous: str = "NORMAL"

    def apply(self, connection: sqlite3.Connection) -> None:
        cursor = connection.cursor()
        try:
            cursor.execute(f"PRAGMA journal_mode = {self.journal_mode}")
            cursor.execute(f"PRAGMA synchronous = {self.synchronous}")
            cursor.execute(f"PRAGMA busy_timeout = {max(1, self.busy_timeout_ms)}")
        finally:
            cursor.close()


def build_sqlite_engine(db_path: Path, policy: SqlitePolicy | None = None) -> Engine:
    """Engine without pooling; every new connection gets the policy pragmas."""

    resolved = policy or SqlitePolicy()
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={
            "check_same_thread": False,
            "timeout": max(1.0, resolved.busy_timeout_ms / 1000.0),
        },
        poolclass=NullPool,
    )

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: sqlite3.Connection, _record: object) -> None:
        resolved.apply(dbapi_connection)

    return engine
