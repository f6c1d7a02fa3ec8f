"""GPU telemetry storage, a Flask query API with its gateway command, and an observability server."""

__version__ = "1.0.0"