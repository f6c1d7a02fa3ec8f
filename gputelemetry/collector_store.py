"""Write access to the telemetry database for the collector."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Table, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine

from .db import gpus, telemetry_samples
from .models import Sample

__all__ = ["CollectorStore"]


def _insert(engine: Engine, table: Table):
    name = engine.dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise ValueError(f"unsupported database dialect: {name}")


class CollectorStore:
    """Persists GPU dimension rows and telemetry samples."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def upsert_gpu(self, uuid: str, gpu_index: str, device: str, model_name: str, hostname: str) -> None:
        """Insert a GPU row, or refresh its non-key fields if it already exists."""
        now = datetime.now(timezone.utc)
        stmt = _insert(self._engine, gpus).values(
            uuid=uuid,
            gpu_index=gpu_index,
            device=device,
            model_name=model_name,
            hostname=hostname,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[gpus.c.uuid],
            set_={
                "gpu_index": stmt.excluded.gpu_index,
                "device": stmt.excluded.device,
                "model_name": stmt.excluded.model_name,
                "hostname": stmt.excluded.hostname,
                "updated_at": now,
            },
        )
        with self._engine.begin() as conn:
            conn.execute(stmt)

    def insert_telemetry(self, record: Sample) -> None:
        """Store a sample; a repeat of (uuid, metric_name, sample_at) is ignored."""
        stmt = _insert(self._engine, telemetry_samples).values(
            uuid=record.uuid,
            metric_name=record.metric_name,
            ingested_at=record.ingested_at,
            sample_at=record.sample_at,
            value=record.value,
            container=record.container,
            pod=record.pod,
            namespace=record.namespace,
            labels_raw=record.labels_raw,
        )
        stmt = stmt.on_conflict_do_nothing(
            index_elements=[
                telemetry_samples.c.uuid,
                telemetry_samples.c.metric_name,
                telemetry_samples.c.sample_at,
            ]
        )
        with self._engine.begin() as conn:
            conn.execute(stmt)

    def ping(self) -> None:
        """Raise if the database cannot be reached."""
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def close(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()

    def __enter__(self) -> "CollectorStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()