# gputelemetry

Store GPU telemetry samples (DCGM metrics such as `DCGM_FI_DEV_GPU_UTIL`) in a
SQL database and query them through a small read-only REST API.

## What is in the package

| Module                          | Contents                                                        |
|---------------------------------|-----------------------------------------------------------------|
| `gputelemetry.config`           | `load_collector_config`, `load_gateway_config`, `ConfigError`   |
| `gputelemetry.models`           | `GPU`, `TelemetryRecord`, `Sample`, `ModelSummary`, `GPUFilter`, `TelemetryFilter` |
| `gputelemetry.retry`            | `retry_with_backoff`, `Cancelled`, `DeadlineExceeded`           |
| `gputelemetry.db`               | the `gpus` and `telemetry_samples` tables, `create_schema`, `connect` |
| `gputelemetry.collector_store`  | `CollectorStore`: writes GPU rows and samples                    |
| `gputelemetry.gateway_store`    | `GatewayStore`: filtered, paginated reads; `like_pattern`        |
| `gputelemetry.api`              | `create_app` (Flask), `parse_limit`, `parse_offset`, `parse_time`, `BadRequest` |
| `gputelemetry.gateway`          | `build_app` and `main`, the `gputelemetry-gateway` command        |
| `gputelemetry.obs`              | `start`, `ObsServer`, `render_metrics`: `/healthz`, `/readyz`, `/metrics` |

Writing is supported on PostgreSQL and SQLite (`CollectorStore` uses their
upsert statements and raises `ValueError` for other databases). On SQLite,
`connect` turns foreign keys on, so a GPU row must exist before its samples
are inserted.

## Preparing a database and writing samples

```python
from datetime import datetime, timezone

from gputelemetry.collector_store import CollectorStore
from gputelemetry.db import connect, create_schema
from gputelemetry.models import Sample

engine = connect("sqlite:///telemetry.db", timeout=30)
create_schema(engine)  # creates the tables if they are missing

with CollectorStore(engine) as store:
    store.upsert_gpu("GPU-00000000-0000-0000-0000-000000000000", "0", "nvidia0",
                     "NVIDIA H100 80GB HBM3", "host-1")
    now = datetime.now(timezone.utc)
    store.insert_telemetry(Sample(
        uuid="GPU-00000000-0000-0000-0000-000000000000",
        metric_name="DCGM_FI_DEV_GPU_UTIL",
        ingested_at=now,
        sample_at=now,
        value=42.5,
    ))
```

`upsert_gpu` refreshes `gpu_index`, `device`, `model_name`, `hostname` and
`updated_at` when the UUID already exists. `insert_telemetry` silently ignores
a second sample with the same `(uuid, metric_name, sample_at)`.

`connect` waits for the database with `retry_with_backoff`: 0.2 s after the
first failure, doubling up to 10 s. It raises `Cancelled` when the given
`threading.Event` is set during a wait and `DeadlineExceeded` when `timeout`
seconds pass.

## Running the API gateway

The gateway reads its configuration from the environment. `DATABASE_URL` is
required and is a SQLAlchemy database URL. The gateway does not create tables;
run `create_schema` against the database first.

```
DATABASE_URL=sqlite:///telemetry.db gputelemetry-gateway
```

| Variable            | Default | Meaning                                  |
|---------------------|---------|------------------------------------------|
| `DATABASE_URL`      | –       | database to read from (required)         |
| `HTTP_PORT`         | `8080`  | port the API listens on                  |
| `API_DEFAULT_LIMIT` | `100`   | page size when `limit` is omitted        |
| `API_MAX_LIMIT`     | `1000`  | larger `limit` values are clamped to it  |
| `METRICS_PORT`      | `9091`  | read into `GatewayConfig.metrics_port`; the command starts no metrics server |

Values that are not integers fall back to their defaults. The command waits
for the database with backoff before serving, and stops on SIGINT or SIGTERM.
It exits with status 1 when `DATABASE_URL` is missing or the port cannot be
bound.

## Endpoints

| Method & path                       | Description                                      |
|-------------------------------------|--------------------------------------------------|
| `GET /healthz`                      | liveness, always `{"status": "ok"}`              |
| `GET /readyz`                       | 200 when the database answers, 503 otherwise     |
| `GET /api/v1/gpus`                  | GPUs; filters `model_name`, `hostname`           |
| `GET /api/v1/gpus/<id>/telemetry`   | samples of one GPU; filter `metric_name`         |
| `GET /api/v1/telemetry`             | samples across GPUs; `uuid`, `metric_name`, `model_name` |
| `GET /api/v1/models`                | each distinct model with its GPU count           |

Filters and pagination:

- `model_name` and `hostname` are case-insensitive substring matches, so
  `model_name=h100` matches `NVIDIA H100 80GB HBM3`. `uuid` and `metric_name`
  match exactly.
- `start_time` and `end_time` are inclusive RFC 3339 bounds on `sample_at`,
  e.g. `2025-07-18T20:42:30Z`.
- `limit` must be a positive integer and `offset` a non-negative one.
- Telemetry comes back ordered by `sample_at`, oldest first. GPUs come back
  ordered by UUID. Models are ordered by GPU count, most first, then by name.
- Empty `container`, `pod`, `namespace` and `labels_raw` fields are left out
  of telemetry records.

A malformed parameter answers 400 with a body such as
`{"error": "invalid start_time: must be RFC3339"}`. A database failure answers
500 with, for example, `{"error": "failed to list GPUs"}`. Each request is
logged with its method, path, status, size, duration and request id (taken
from `X-Request-Id` when the client sends one).

## Observability server

```python
from gputelemetry import obs

server = obs.start(9091, ready=lambda: None)
...
server.shutdown()
```

`ready` is called on each `/readyz` request; if it raises, the answer is 503
with `{"status":"not_ready","error":"..."}`. `/metrics` returns process and
request counters in the Prometheus text format. `ObsServer` is also a context
manager, and `shutdown` may be called more than once.

## Using the helpers from Python

```python
from gputelemetry.api import parse_limit, BadRequest
from gputelemetry.gateway_store import like_pattern

parse_limit("", 100, 1000)      # 100, the default
parse_limit("5000", 100, 1000)  # 1000, clamped
like_pattern("h100")            # "%h100%"
like_pattern("")                # None: no filter

try:
    parse_limit("abc", 100, 1000)
except BadRequest as exc:
    print(exc)                  # invalid limit
```

## What the package does not do

- It does not receive telemetry from a message queue. `load_collector_config`
  reads `MQ_ADDRESS` (`localhost:9090`), `MQ_TOPIC` (`gpu-telemetry`),
  `CONSUMER_ID` (`collector-0`), `CONSUMER_GROUP` (`collector-group`),
  `METRICS_PORT` (`9091`) and the required `DATABASE_URL`, but there is no
  collector command: samples are written by calling `CollectorStore` yourself.
- There is no schema migration ledger; `create_schema` only creates missing
  tables.
- The gateway serves no OpenAPI document or Swagger UI.