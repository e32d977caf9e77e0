from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from orderdesk.core.config import Settings

SERVICE_NAME = "orderdesk"

_provider: TracerProvider | None = None
_exporter_attached = False


def _get_or_create_provider(settings: Settings | None = None) -> TracerProvider:
    global _provider

    if _provider is not None:
        return _provider

    attributes = {"service.name": SERVICE_NAME}
    if settings is not None:
        attributes["service.version"] = settings.app_version
        attributes["deployment.environment"] = settings.app_env
    _provider = TracerProvider(resource=Resource.create(attributes))
    trace.set_tracer_provider(_provider)
    return _provider


def build_span_exporter(settings: Settings) -> SpanExporter | None:
    """Exporter named by ``otel_exporter``; ``none`` keeps spans in-process only."""
    if settings.otel_exporter == "console":
        return ConsoleSpanExporter()
    return None


def setup_otel(settings: Settings) -> TracerProvider | None:
    global _exporter_attached

    if not settings.otel_enabled:
        return None

    provider = _get_or_create_provider(settings)
    if _exporter_attached:
        return provider

    exporter = build_span_exporter(settings)
    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    _exporter_attached = True
    return provider


def setup_inmemory_otel() -> InMemorySpanExporter:
    provider = _get_or_create_provider()
    exporter = InMemorySpanExporter()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def get_fastapi_server_request_hook():
    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        headers = dict(scope.get("headers", []))
        correlation_raw = headers.get(b"x-correlation-id")
        if correlation_raw:
            span.set_attribute("orderdesk.correlation_id", correlation_raw.decode("utf-8"))

    return server_request_hook
