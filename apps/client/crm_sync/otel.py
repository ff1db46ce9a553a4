from __future__ import annotations

import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

try:
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
except Exception:  # pragma: no cover - installed through the otlp extra
    OTLPSpanExporter = None  # type: ignore[assignment]


_exporters_installed = False
_provider: TracerProvider | None = None


def _provider_for(service_name: str, environment: str | None = None) -> TracerProvider:
    """Return the process tracer provider; the first caller names the service."""
    global _provider

    if _provider is not None:
        return _provider

    attributes = {
        "service.name": service_name,
        "service.version": os.getenv("CRM_SYNC_VERSION", "0.1.0"),
    }
    if environment:
        attributes["deployment.environment"] = environment
    _provider = TracerProvider(resource=Resource.create(attributes))
    trace.set_tracer_provider(_provider)
    return _provider


def setup_otel(service_name: str, enable: bool, environment: str | None = None) -> TracerProvider | None:
    global _exporters_installed

    if not enable:
        return None

    provider = _provider_for(service_name, environment)
    if _exporters_installed:
        return provider

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint and OTLPSpanExporter is not None:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if os.getenv("OTEL_CONSOLE_EXPORTER", "false").lower() == "true":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_installed = True
    return provider


def setup_inmemory_otel(service_name: str = "crm-client") -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _provider_for(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name, os.getenv("CRM_SYNC_VERSION", "0.1.0"))
