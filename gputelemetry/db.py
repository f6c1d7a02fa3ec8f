"""Database schema and connection setup shared by the collector and the gateway."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.types import TypeDecorator

from .retry import retry_with_backoff

__all__ = ["metadata", "gpus", "telemetry_samples", "create_schema", "connect"]

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _UTCDateTime(TypeDecorator):
    """A timezone-aware timestamp stored and returned in UTC."""

    impl = DateTime
    cache_ok = True

    def __init__(self) -> None:
        super().__init__(timezone=True)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


metadata = MetaData()

gpus = Table(
    "gpus",
    metadata,
    Column("uuid", Text, primary_key=True),
    Column("gpu_index", Text),
    Column("device", Text),
    Column("model_name", Text, nullable=False),
    Column("hostname", Text),
    Column("created_at", _UTCDateTime(), nullable=False, default=_utcnow),
    Column("updated_at", _UTCDateTime(), nullable=False, default=_utcnow),
)

telemetry_samples = Table(
    "telemetry_samples",
    metadata,
    Column(
        "id",
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    ),
    Column("uuid", Text, ForeignKey("gpus.uuid"), nullable=False),
    Column("metric_name", Text, nullable=False),
    Column("ingested_at", _UTCDateTime(), nullable=False),
    Column("sample_at", _UTCDateTime(), nullable=False),
    Column("value", Float(precision=53), nullable=False),
    Column("container", Text),
    Column("pod", Text),
    Column("namespace", Text),
    Column("labels_raw", Text),
    UniqueConstraint("uuid", "metric_name", "sample_at", name="uq_telemetry_sample"),
    Index("ix_telemetry_uuid_sample_at", "uuid", "sample_at"),
)


def create_schema(engine: Engine) -> None:
    """Create the ``gpus`` and ``telemetry_samples`` tables if they are missing."""
    metadata.create_all(engine)


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def _ping(engine: Engine) -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def connect(
    url: str,
    stop: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
) -> Engine:
    """Create an engine for ``url`` and wait, with backoff, until it answers.

    Raises :class:`~gputelemetry.retry.Cancelled` or
    :class:`~gputelemetry.retry.DeadlineExceeded` if the database never
    becomes reachable.
    """
    engine = create_engine(url)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    logger.info("connecting to database")
    try:
        retry_with_backoff(lambda: _ping(engine), "postgres.Ping", stop, timeout)
    except BaseException:
        engine.dispose()
        raise
    return engine