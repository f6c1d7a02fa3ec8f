"""Entry point that runs the API gateway HTTP server."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from socketserver import ThreadingMixIn
from typing import Optional, Sequence, Tuple
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from flask import Flask

from .api import create_app
from .config import ConfigError, GatewayConfig, load_gateway_config
from .db import connect
from .gateway_store import GatewayStore
from .retry import Cancelled, DeadlineExceeded

__all__ = ["build_app", "main"]

logger = logging.getLogger(__name__)


class _ThreadingWSGIServer(ThreadingMixIn, WSGIServer):
    daemon_threads = True


class _RequestHandler(WSGIRequestHandler):
    timeout = 15

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        logger.debug("wsgi: " + format, *args)


def build_app(
    config: GatewayConfig,
    stop: Optional[threading.Event] = None,
    timeout: Optional[float] = None,
) -> Tuple[Flask, GatewayStore]:
    """Connect to the database and return the application with its store.

    The caller owns the store and should close it when done.
    """
    engine = connect(config.database_url, stop, timeout)
    store = GatewayStore(engine)
    return create_app(store, config), store


def _install_signal_handlers(stop: threading.Event) -> dict:
    if threading.current_thread() is not threading.main_thread():
        return {}

    def handler(signum, _frame) -> None:
        stop.set()

    previous = {}
    for sig in (signal.SIGTERM, signal.SIGINT):
        previous[sig] = signal.signal(sig, handler)
    return previous


def _restore_signal_handlers(previous: dict) -> None:
    for sig, old in previous.items():
        signal.signal(sig, old)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the gateway until SIGTERM or SIGINT; return the exit status."""
    parser = argparse.ArgumentParser(
        prog="gputelemetry-gateway",
        description="Serve the GPU telemetry REST API. Configured through environment variables.",
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

    try:
        config = load_gateway_config()
    except ConfigError as exc:
        logger.error("failed to load config: %s", exc)
        return 1

    stop = threading.Event()
    previous = _install_signal_handlers(stop)
    try:
        try:
            app, store = build_app(config, stop)
        except (Cancelled, DeadlineExceeded) as exc:
            logger.error("failed to connect to database: %s", exc)
            return 1

        with store:
            try:
                httpd = make_server(
                    "", config.http_port, app,
                    server_class=_ThreadingWSGIServer,
                    handler_class=_RequestHandler,
                )
            except OSError as exc:
                logger.error("HTTP server error: %s", exc)
                return 1

            thread = threading.Thread(target=httpd.serve_forever, name="gateway-http", daemon=True)
            thread.start()
            logger.info("API gateway starting port=%d", httpd.server_address[1])

            while not stop.wait(0.5):
                pass

            logger.info("shutting down API gateway")
            httpd.shutdown()
            httpd.server_close()
            thread.join(timeout=10)
            logger.info("API gateway stopped")
        return 0
    finally:
        _restore_signal_handlers(previous)


if __name__ == "__main__":
    sys.exit(main())