"""The REST API of the gateway: GPUs, telemetry, models and health probes."""

from __future__ import annotations

import itertools
import json
import logging
import os
import re
import secrets
import socket
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from flask import Flask, Response, g, request

from .config import GatewayConfig
from .models import GPUFilter, TelemetryFilter

__all__ = ["BadRequest", "parse_limit", "parse_offset", "parse_time", "create_app"]

_INTEGER = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})"
    r"(?:[.,](\d+))?"
    r"(Z|[+-]\d{2}:\d{2})"
)


class BadRequest(ValueError):
    """A query parameter could not be accepted; the message is sent to the client."""


def _atoi(raw: str) -> Optional[int]:
    """Parse a signed 64-bit decimal integer strictly, or return ``None``."""
    if not _INTEGER.fullmatch(raw):
        return None
    value = int(raw)
    if not _INT64_MIN <= value <= _INT64_MAX:
        return None
    return value


def parse_limit(raw: str, default_limit: int, max_limit: int) -> int:
    """Return the page size from ``raw``: default when empty, capped at ``max_limit``."""
    if not raw:
        return default_limit
    value = _atoi(raw)
    if value is None or value < 1:
        raise BadRequest("invalid limit")
    return min(value, max_limit)


def parse_offset(raw: str) -> int:
    """Return the page offset from ``raw``: 0 when empty, never negative."""
    if not raw:
        return 0
    value = _atoi(raw)
    if value is None or value < 0:
        raise BadRequest("invalid offset")
    return value


def parse_time(raw: str, name: str) -> Optional[datetime]:
    """Parse an optional RFC 3339 timestamp; ``name`` labels the error message."""
    if not raw:
        return None
    error = BadRequest(f"invalid {name}: must be RFC3339")
    match = _RFC3339.fullmatch(raw)
    if match is None:
        raise error
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    micro = int((fraction or "")[:6].ljust(6, "0"))
    try:
        if zone == "Z":
            tz = timezone.utc
        else:
            sign = 1 if zone[0] == "+" else -1
            hours, minutes = int(zone[1:3]), int(zone[4:6])
            if minutes >= 60:
                raise ValueError("offset minutes out of range")
            tz = timezone(sign * timedelta(hours=hours, minutes=minutes))
        return datetime(
            int(year), int(month), int(day),
            int(hour), int(minute), int(second), micro, tzinfo=tz,
        )
    except ValueError:
        raise error from None


def _json_response(status: int, payload: Any) -> Response:
    body = json.dumps(payload, ensure_ascii=False) + "\n"
    return Response(body, status=status, mimetype="application/json")


def _error(status: int, message: str) -> Response:
    return _json_response(status, {"error": message})


class _RequestIds:
    """Generates request ids of the form ``host/prefix-000001``."""

    def __init__(self) -> None:
        host = socket.gethostname() or "localhost"
        self._prefix = f"{host}/{secrets.token_urlsafe(8)}"
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def next(self) -> str:
        with self._lock:
            n = next(self._counter)
        return f"{self._prefix}-{n:06d}"


def _real_ip() -> str:
    for header in ("True-Client-IP", "X-Real-IP"):
        value = request.headers.get(header)
        if value:
            return value
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or ""


def create_app(repo, config: GatewayConfig, logger: Optional[logging.Logger] = None) -> Flask:
    """Build the Flask application serving the gateway API on top of ``repo``."""
    log = logger or logging.getLogger(__name__)
    app = Flask(__name__)
    request_ids = _RequestIds()

    @app.before_request
    def _begin() -> None:
        g.started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-Id") or request_ids.next()

    @app.after_request
    def _log_request(response: Response) -> Response:
        started = getattr(g, "started", time.perf_counter())
        log.info(
            "http request method=%s path=%s query=%s status=%d bytes=%d "
            "duration=%.6fs request_id=%s remote=%s",
            request.method,
            request.path,
            request.query_string.decode("latin-1"),
            response.status_code,
            response.calculate_content_length() or 0,
            time.perf_counter() - started,
            getattr(g, "request_id", ""),
            _real_ip(),
        )
        return response

    @app.errorhandler(BadRequest)
    def _bad_request(exc: BadRequest) -> Response:
        return _error(400, str(exc))

    @app.errorhandler(500)
    def _internal(_exc) -> Response:
        return Response(b"", status=500)

    def _fetch(call: Callable[[], Any], message: str, context: str) -> Response:
        try:
            items = call()
        except Exception:
            log.exception("%s failed %s", message, context)
            return _error(500, message)
        return _json_response(200, [item.to_json() for item in items or []])

    def _page() -> tuple:
        q = request.args
        limit = parse_limit(q.get("limit", ""), config.default_limit, config.max_limit)
        offset = parse_offset(q.get("offset", ""))
        return limit, offset

    @app.get("/healthz")
    def healthz() -> Response:
        return _json_response(200, {"status": "ok"})

    @app.get("/readyz")
    def readyz() -> Response:
        try:
            repo.ping()
        except Exception as exc:
            log.warning("readyz: database not ready error=%s", exc)
            return _error(503, "database not ready")
        return _json_response(200, {"status": "ok"})

    @app.get("/api/v1/gpus")
    def list_gpus() -> Response:
        limit, offset = _page()
        f = GPUFilter(
            model_name=request.args.get("model_name", ""),
            hostname=request.args.get("hostname", ""),
            limit=limit,
            offset=offset,
        )
        return _fetch(
            lambda: repo.query_gpus(f),
            "failed to list GPUs",
            f"model_name={f.model_name!r} hostname={f.hostname!r}",
        )

    @app.get("/api/v1/gpus/<gpu_id>/telemetry")
    def get_telemetry(gpu_id: str) -> Response:
        q = request.args
        metric_name = q.get("metric_name", "")
        start_time = parse_time(q.get("start_time", ""), "start_time")
        end_time = parse_time(q.get("end_time", ""), "end_time")
        limit, offset = _page()
        return _fetch(
            lambda: repo.get_telemetry(gpu_id, metric_name, start_time, end_time, limit, offset),
            "failed to retrieve telemetry",
            f"uuid={gpu_id!r} metric_name={metric_name!r}",
        )

    @app.get("/api/v1/telemetry")
    def query_telemetry() -> Response:
        q = request.args
        start_time = parse_time(q.get("start_time", ""), "start_time")
        end_time = parse_time(q.get("end_time", ""), "end_time")
        limit, offset = _page()
        f = TelemetryFilter(
            uuid=q.get("uuid", ""),
            metric_name=q.get("metric_name", ""),
            model_name=q.get("model_name", ""),
            start_time=start_time,
            end_time=end_time,
            limit=limit,
            offset=offset,
        )
        return _fetch(
            lambda: repo.query_telemetry(f),
            "failed to query telemetry",
            f"uuid={f.uuid!r} metric_name={f.metric_name!r} model_name={f.model_name!r}",
        )

    @app.get("/api/v1/models")
    def list_models() -> Response:
        return _fetch(repo.list_models, "failed to list models", "")

    return app


if os.environ.get("GPUTELEMETRY_API_DEBUG"):  # pragma: no cover
    logging.getLogger(__name__).setLevel(logging.DEBUG)