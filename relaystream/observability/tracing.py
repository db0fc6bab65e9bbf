"""
relaystream - OpenTelemetry Tracing

One span per top-level resilient call and one per streaming session.

Usage:
    from relaystream.observability.tracing import setup_tracing, get_tracer

    # Optional: install an SDK provider (otherwise spans are no-ops)
    setup_tracing(service_name="my-app", console_export=True)

    tracer = get_tracer()
    span = tracer.start_span("relaystream.session")
    span.set_attribute("relaystream.model", "claude-sonnet-4-5")
    span.end()

Spans are started and ended explicitly rather than made current: sessions are
async generators whose steps can run in different contexts, so attaching a
span to the context across a yield would detach in the wrong place.
"""

from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import Span, Status, StatusCode

from .. import __version__

TRACER_NAME = "relaystream"


def setup_tracing(
    service_name: str = "relaystream",
    console_export: bool = False,
    exporter: Optional[SpanExporter] = None,
) -> TracerProvider:
    """
    Install an SDK tracer provider as the global provider.

    Args:
        service_name: Name of the service
        console_export: Whether to export spans to the console (for debugging)
        exporter: Additional exporter (e.g. an in-memory exporter in tests)
    """
    resource = Resource.create({
        SERVICE_NAME: service_name,
        SERVICE_VERSION: __version__,
    })
    provider = TracerProvider(resource=resource)

    if console_export:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    return provider


def get_tracer(provider: Optional[trace.TracerProvider] = None) -> trace.Tracer:
    """Get the relaystream tracer from the given or global provider."""
    if provider is not None:
        return provider.get_tracer(TRACER_NAME, __version__)
    return trace.get_tracer(TRACER_NAME, __version__)


def end_span(span: Span, outcome: str, error_type: Optional[str] = None) -> None:
    """Record the outcome on a span and end it."""
    span.set_attribute("relaystream.outcome", outcome)
    if error_type:
        span.set_attribute("relaystream.error_type", error_type)
        span.set_status(Status(StatusCode.ERROR, error_type))
    span.end()
