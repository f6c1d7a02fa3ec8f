"""Read access to the telemetry database for the API gateway."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import Integer, cast, func, select, text
from sqlalchemy.engine import Engine

from .db import gpus, telemetry_samples
from .models import GPU, GPUFilter, ModelSummary, TelemetryFilter, TelemetryRecord

__all__ = ["GatewayStore", "like_pattern"]

_DEFAULT_LIMIT = 100
_LIST_ALL_LIMIT = 10_000


def like_pattern(text: str) -> Optional[str]:
    """Wrap ``text`` in ``%`` for substring matching; empty means no filter (``None``)."""
    if not text:
        return None
    return f"%{text}%"


def _gpu_columns():
    return (
        gpus.c.uuid,
        func.coalesce(gpus.c.gpu_index, "").label("gpu_index"),
        func.coalesce(gpus.c.device, "").label("device"),
        gpus.c.model_name,
        func.coalesce(gpus.c.hostname, "").label("hostname"),
        gpus.c.created_at,
        gpus.c.updated_at,
    )


def _telemetry_columns():
    t = telemetry_samples
    return (
        t.c.id,
        t.c.uuid,
        t.c.metric_name,
        t.c.ingested_at,
        t.c.sample_at,
        t.c.value,
        func.coalesce(t.c.container, "").label("container"),
        func.coalesce(t.c.pod, "").label("pod"),
        func.coalesce(t.c.namespace, "").label("namespace"),
        func.coalesce(t.c.labels_raw, "").label("labels_raw"),
    )


def _to_record(row) -> TelemetryRecord:
    return TelemetryRecord(
        id=int(row.id),
        uuid=row.uuid,
        metric_name=row.metric_name,
        ingested_at=row.ingested_at,
        sample_at=row.sample_at,
        value=float(row.value),
        container=row.container,
        pod=row.pod,
        namespace=row.namespace,
        labels_raw=row.labels_raw,
    )


class GatewayStore:
    """Queries GPUs, telemetry samples and model summaries."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def list_gpus(self) -> List[GPU]:
        """Return every GPU, ordered by UUID."""
        return self.query_gpus(GPUFilter(limit=_LIST_ALL_LIMIT, offset=0))

    def query_gpus(self, f: GPUFilter) -> List[GPU]:
        """Return GPUs matching ``f``; model and host match case-insensitive substrings."""
        limit = f.limit if f.limit > 0 else _DEFAULT_LIMIT
        offset = max(f.offset, 0)

        stmt = select(*_gpu_columns())
        model = like_pattern(f.model_name)
        if model is not None:
            stmt = stmt.where(gpus.c.model_name.ilike(model))
        host = like_pattern(f.hostname)
        if host is not None:
            stmt = stmt.where(gpus.c.hostname.ilike(host))
        stmt = stmt.order_by(gpus.c.uuid).limit(limit).offset(offset)

        with self._engine.connect() as conn:
            rows = conn.execute(stmt).all()
        return [
            GPU(
                uuid=row.uuid,
                gpu_index=row.gpu_index,
                device=row.device,
                model_name=row.model_name,
                hostname=row.hostname,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )
            for row in rows
        ]

    def get_telemetry(
        self,
        uuid: str,
        metric_name: str = "",
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: int = _DEFAULT_LIMIT,
        offset: int = 0,
    ) -> List[TelemetryRecord]:
        """Return samples of one GPU ordered by ``sample_at``; time bounds are inclusive."""
        t = telemetry_samples
        stmt = select(*_telemetry_columns()).where(t.c.uuid == uuid)
        if metric_name:
            stmt = stmt.where(t.c.metric_name == metric_name)
        if start_time is not None:
            stmt = stmt.where(t.c.sample_at >= start_time)
        if end_time is not None:
            stmt = stmt.where(t.c.sample_at <= end_time)
        stmt = stmt.order_by(t.c.sample_at.asc()).limit(limit).offset(offset)

        with self._engine.connect() as conn:
            return [_to_record(row) for row in conn.execute(stmt)]

    def query_telemetry(self, f: TelemetryFilter) -> List[TelemetryRecord]:
        """Return samples across GPUs matching ``f``, ordered by ``sample_at``.

        UUID and metric name match exactly; model name matches a
        case-insensitive substring of the GPU's model.
        """
        limit = f.limit if f.limit > 0 else _DEFAULT_LIMIT
        offset = max(f.offset, 0)
        t = telemetry_samples

        stmt = select(*_telemetry_columns()).select_from(t.join(gpus, t.c.uuid == gpus.c.uuid))
        if f.uuid:
            stmt = stmt.where(t.c.uuid == f.uuid)
        if f.metric_name:
            stmt = stmt.where(t.c.metric_name == f.metric_name)
        model = like_pattern(f.model_name)
        if model is not None:
            stmt = stmt.where(gpus.c.model_name.ilike(model))
        if f.start_time is not None:
            stmt = stmt.where(t.c.sample_at >= f.start_time)
        if f.end_time is not None:
            stmt = stmt.where(t.c.sample_at <= f.end_time)
        stmt = stmt.order_by(t.c.sample_at.asc()).limit(limit).offset(offset)

        with self._engine.connect() as conn:
            return [_to_record(row) for row in conn.execute(stmt)]

    def list_models(self) -> List[ModelSummary]:
        """Return each model name with its GPU count, most common first, then by name."""
        count = cast(func.count(), Integer).label("gpu_count")
        stmt = (
            select(gpus.c.model_name, count)
            .group_by(gpus.c.model_name)
            .order_by(count.desc(), gpus.c.model_name.asc())
        )
        with self._engine.connect() as conn:
            return [
                ModelSummary(model_name=row.model_name, gpu_count=int(row.gpu_count))
                for row in conn.execute(stmt)
            ]

    def ping(self) -> None:
        """Raise if the database cannot be reached."""
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def close(self) -> None:
        """Release pooled connections."""
        self._engine.dispose()

    def __enter__(self) -> "GatewayStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()