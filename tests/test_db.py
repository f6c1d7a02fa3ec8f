import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import inspect, select, text
from sqlalchemy.exc import IntegrityError, OperationalError

from gputelemetry.db import connect, create_schema, gpus, telemetry_samples
from gputelemetry.retry import Cancelled, DeadlineExceeded


def _url(path):
    return f"sqlite:///{path}"


@pytest.fixture
def engine(tmp_path):
    eng = connect(_url(tmp_path / "telemetry.db"))
    create_schema(eng)
    yield eng
    eng.dispose()


def _gpu_row(uuid, when):
    return {
        "uuid": uuid,
        "gpu_index": "0",
        "device": "nvidia0",
        "model_name": "NVIDIA H100 80GB HBM3",
        "hostname": "host-1",
        "created_at": when,
        "updated_at": when,
    }


def test_create_schema_creates_both_tables(engine):
    names = set(inspect(engine).get_table_names())
    assert {"gpus", "telemetry_samples"} <= names


def test_create_schema_is_idempotent(engine):
    create_schema(engine)
    names = set(inspect(engine).get_table_names())
    assert {"gpus", "telemetry_samples"} <= names


def test_connect_returns_working_engine(tmp_path):
    eng = connect(_url(tmp_path / "ok.db"))
    try:
        with eng.connect() as conn:
            assert conn.execute(text("SELECT 1")).scalar() == 1
    finally:
        eng.dispose()


def test_connect_gives_up_at_deadline(tmp_path):
    with pytest.raises(DeadlineExceeded) as excinfo:
        connect(_url(tmp_path / "missing" / "x.db"), timeout=0.3)
    assert isinstance(excinfo.value.__cause__, OperationalError)


def test_connect_cancelled_by_stop_event(tmp_path):
    stop = threading.Event()
    stop.set()
    with pytest.raises(Cancelled):
        connect(_url(tmp_path / "missing" / "x.db"), stop=stop)


def test_timestamps_come_back_in_utc(engine):
    when = datetime(2025, 7, 18, 22, 42, 30, 123456, tzinfo=timezone(timedelta(hours=2)))
    with engine.begin() as conn:
        conn.execute(gpus.insert().values(**_gpu_row("GPU-aaa", when)))
    with engine.connect() as conn:
        row = conn.execute(select(gpus.c.created_at)).one()
    assert row.created_at == when
    assert row.created_at.utcoffset() == timedelta(0)


def test_foreign_key_enforced(engine):
    now = datetime.now(timezone.utc)
    with pytest.raises(IntegrityError):
        with engine.begin() as conn:
            conn.execute(
                telemetry_samples.insert().values(
                    uuid="GPU-unknown",
                    metric_name="DCGM_FI_DEV_GPU_UTIL",
                    ingested_at=now,
                    sample_at=now,
                    value=1.0,
                )
            )


def test_duplicate_sample_violates_unique_constraint(engine):
    now = datetime.now(timezone.utc)
    sample = {
        "uuid": "GPU-aaa",
        "metric_name": "DCGM_FI_DEV_GPU_UTIL",
        "ingested_at": now,
        "sample_at": now,
        "value": 1.0,
    }
    with engine.begin() as conn:
        conn.execute(gpus.insert().values(**_gpu_row("GPU-aaa", now)))
        conn.execute(telemetry_samples.insert().values(**sample))
    with pytest.raises(IntegrityError):
        with engine.begin() as conn:
            conn.execute(telemetry_samples.insert().values(**sample))