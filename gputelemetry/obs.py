"""A small HTTP server exposing /healthz, /readyz and /metrics on its own port."""

from __future__ import annotations

import json
import logging
import os
import platform
import threading
import time
from collections import Counter
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Optional
from urllib.parse import urlsplit

__all__ = ["ObsServer", "start", "render_metrics"]

logger = logging.getLogger(__name__)

ReadyFunc = Callable[[], None]

_STARTED_AT = time.time()
_KNOWN_PATHS = ("/healthz", "/readyz", "/metrics")
_requests: Counter = Counter()
_requests_lock = threading.Lock()

METRICS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


def _record(path: str, status: int) -> None:
    label = path if path in _KNOWN_PATHS else "other"
    with _requests_lock:
        _requests[(label, status)] += 1


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def render_metrics() -> str:
    """Return process and request metrics in the Prometheus text format."""
    cpu = os.times()
    major, minor, patch = platform.python_version_tuple()
    lines = [
        "# HELP process_start_time_seconds Start time of the process since unix epoch in seconds.",
        "# TYPE process_start_time_seconds gauge",
        f"process_start_time_seconds {_STARTED_AT:.3f}",
        "# HELP process_cpu_seconds_total Total user and system CPU time spent in seconds.",
        "# TYPE process_cpu_seconds_total counter",
        f"process_cpu_seconds_total {cpu.user + cpu.system:.3f}",
        "# HELP python_info Python platform information.",
        "# TYPE python_info gauge",
        'python_info{implementation="%s",major="%s",minor="%s",patchlevel="%s",version="%s"} 1'
        % (
            _escape(platform.python_implementation()),
            major, minor, _escape(patch), _escape(platform.python_version()),
        ),
        "# HELP obs_http_requests_total Requests served by the observability endpoint.",
        "# TYPE obs_http_requests_total counter",
    ]
    with _requests_lock:
        counts = sorted(_requests.items())
    lines.extend(
        f'obs_http_requests_total{{code="{status}",path="{_escape(path)}"}} {count}'
        for (path, status), count in counts
    )
    return "\n".join(lines) + "\n"


class _ObsHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    ready_check: Optional[ReadyFunc] = None


class _Handler(BaseHTTPRequestHandler):
    timeout = 10
    server: _ObsHTTPServer

    def do_GET(self) -> None:  # noqa: N802 (http.server naming)
        path = urlsplit(self.path).path
        if path == "/healthz":
            self._send(path, 200, "application/json", '{"status":"ok"}\n')
        elif path == "/readyz":
            self._readyz(path)
        elif path == "/metrics":
            _record(path, 200)
            self._send(path, 200, METRICS_CONTENT_TYPE, render_metrics(), record=False)
        else:
            self._send(path, 404, "text/plain; charset=utf-8", "404 page not found\n")

    def _readyz(self, path: str) -> None:
        ready = self.server.ready_check
        if ready is not None:
            try:
                ready()
            except Exception as exc:
                body = json.dumps(
                    {"status": "not_ready", "error": str(exc)}, separators=(",", ":")
                )
                self._send(path, 503, "application/json", body + "\n")
                return
        self._send(path, 200, "application/json", '{"status":"ready"}\n')

    def _send(self, path: str, status: int, content_type: str, body: str, record: bool = True) -> None:
        if record:
            _record(path, status)
        data = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        logger.debug("obs request: " + format, *args)


class ObsServer:
    """A running observability server; stop it with :meth:`shutdown`."""

    def __init__(self, httpd: _ObsHTTPServer, thread: threading.Thread) -> None:
        self._httpd = httpd
        self._thread = thread
        self._lock = threading.Lock()
        self._closed = False

    @property
    def port(self) -> int:
        """The TCP port the server is bound to."""
        return self._httpd.server_address[1]

    def shutdown(self) -> None:
        """Stop serving and release the socket. Safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._httpd.shutdown()
        self._httpd.server_close()
        self._thread.join(timeout=5)

    def __enter__(self) -> "ObsServer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()


def start(port: int, ready: Optional[ReadyFunc] = None, host: str = "") -> ObsServer:
    """Bind to ``host:port`` and serve in a background thread.

    ``ready`` is called on each /readyz request and signals "not ready" by raising.
    """
    httpd = _ObsHTTPServer((host, port), _Handler)
    httpd.ready_check = ready
    thread = threading.Thread(target=httpd.serve_forever, name="obs-server", daemon=True)
    thread.start()
    logger.info("obs server listening port=%d", httpd.server_address[1])
    return ObsServer(httpd, thread)