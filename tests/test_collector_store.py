from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import IntegrityError, OperationalError

from gputelemetry.collector_store import CollectorStore
from gputelemetry.db import connect, create_schema, gpus, telemetry_samples
from gputelemetry.models import Sample

BASE = datetime(2026, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(tmp_path):
    eng = connect(f"sqlite:///{tmp_path / 'collector.db'}")
    create_schema(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    return CollectorStore(engine)


def _sample(uuid="GPU-aaa", metric="DCGM_FI_DEV_GPU_UTIL", sample_at=BASE, value=42.5, **extra):
    return Sample(
        uuid=uuid,
        metric_name=metric,
        ingested_at=sample_at + timedelta(seconds=1),
        sample_at=sample_at,
        value=value,
        **extra,
    )


def _gpu_rows(engine):
    with engine.connect() as conn:
        return conn.execute(select(gpus)).all()


def _sample_rows(engine):
    with engine.connect() as conn:
        return conn.execute(select(telemetry_samples).order_by(telemetry_samples.c.id)).all()


def test_upsert_inserts_new_gpu(engine, store):
    store.upsert_gpu("GPU-aaa", "0", "nvidia0", "NVIDIA H100", "host-1")
    rows = _gpu_rows(engine)
    assert [(r.uuid, r.gpu_index, r.device, r.model_name, r.hostname) for r in rows] == [
        ("GPU-aaa", "0", "nvidia0", "NVIDIA H100", "host-1")
    ]


def test_upsert_refreshes_non_key_fields(engine, store):
    store.upsert_gpu("GPU-aaa", "0", "nvidia0", "NVIDIA H100", "host-1")
    first = _gpu_rows(engine)[0]
    store.upsert_gpu("GPU-aaa", "3", "nvidia3", "NVIDIA H100 80GB HBM3", "host-2")
    rows = _gpu_rows(engine)
    assert [(r.uuid, r.gpu_index, r.device, r.model_name, r.hostname) for r in rows] == [
        ("GPU-aaa", "3", "nvidia3", "NVIDIA H100 80GB HBM3", "host-2")
    ]
    assert rows[0].created_at == first.created_at
    assert rows[0].updated_at >= first.updated_at


def test_insert_telemetry_round_trip(engine, store):
    store.upsert_gpu("GPU-aaa", "0", "nvidia0", "NVIDIA H100", "host-1")
    sample = _sample(container="trainer", pod="pod-1", namespace="ml", labels_raw="labels-here")
    store.insert_telemetry(sample)
    rows = _sample_rows(engine)
    assert [
        (r.uuid, r.metric_name, r.ingested_at, r.sample_at, r.value, r.container, r.pod, r.namespace, r.labels_raw)
        for r in rows
    ] == [
        (
            sample.uuid, sample.metric_name, sample.ingested_at, sample.sample_at, sample.value,
            sample.container, sample.pod, sample.namespace, sample.labels_raw,
        )
    ]


def test_insert_telemetry_keeps_instant_across_timezones(engine, store):
    store.upsert_gpu("GPU-aaa", "0", "nvidia0", "NVIDIA H100", "host-1")
    local = BASE.astimezone(timezone(timedelta(hours=-5)))
    store.insert_telemetry(_sample(sample_at=local))
    row = _sample_rows(engine)[0]
    assert row.sample_at == BASE


def test_duplicate_sample_is_ignored(engine, store):
    store.upsert_gpu("GPU-aaa", "0", "nvidia0", "NVIDIA H100", "host-1")
    store.insert_telemetry(_sample(value=1.0))
    store.insert_telemetry(_sample(value=99.0))
    rows = _sample_rows(engine)
    assert [r.value for r in rows] == [1.0]


def test_distinct_samples_are_all_kept(engine, store):
    store.upsert_gpu("GPU-aaa", "0", "nvidia0", "NVIDIA H100", "host-1")
    samples = [
        _sample(sample_at=BASE),
        _sample(sample_at=BASE + timedelta(seconds=1)),
        _sample(metric="DCGM_FI_DEV_GPU_TEMP", sample_at=BASE),
    ]
    for s in samples:
        store.insert_telemetry(s)
    rows = _sample_rows(engine)
    assert [(r.metric_name, r.sample_at) for r in rows] == [(s.metric_name, s.sample_at) for s in samples]


def test_insert_for_unknown_gpu_fails(engine, store):
    with pytest.raises(IntegrityError):
        store.insert_telemetry(_sample(uuid="GPU-unknown"))
    assert _sample_rows(engine) == []


def test_ping_fails_when_database_unreachable(tmp_path):
    broken = CollectorStore(create_engine(f"sqlite:///{tmp_path / 'missing' / 'x.db'}"))
    with pytest.raises(OperationalError):
        broken.ping()
    broken.close()


def test_store_usable_as_context_manager(engine):
    with CollectorStore(engine) as store:
        store.upsert_gpu("GPU-ctx", "1", "nvidia1", "NVIDIA A100", "host-9")
    assert [r.uuid for r in _gpu_rows(engine)] == ["GPU-ctx"]