from __future__ import annotations

import logging

from prometheus_client import start_http_server

from crm_sync.core.config import Settings, get_settings
from crm_sync.logging import configure_logging
from crm_sync.otel import setup_otel


logger = logging.getLogger("crm_sync.runtime")

_metrics_port: int | None = None


def bootstrap(settings: Settings | None = None) -> Settings:
    """Process-level setup for an embedding app: logging, tracing and the metrics endpoint.

    Safe to call more than once; only the first call installs handlers and exporters.
    """
    global _metrics_port

    settings = settings or get_settings()
    configure_logging(settings.log_level)
    setup_otel(settings.app_name, settings.otel_enabled, environment=settings.app_env)

    if settings.metrics_enabled and _metrics_port is None:
        start_http_server(settings.metrics_port)
        _metrics_port = settings.metrics_port

    logger.info("client.bootstrapped", extra={"status": settings.app_env})
    return settings
