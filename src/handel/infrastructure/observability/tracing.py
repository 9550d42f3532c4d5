"""OpenTelemetry tracing configuration."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
)

from handel import __version__
from handel.config import ObservabilitySettings


def setup_tracing(settings: ObservabilitySettings) -> TracerProvider | None:
    """Install a console-exporting tracer provider when tracing is enabled."""
    if not settings.tracing_enabled:
        return None

    provider = TracerProvider(resource=Resource.create({
        "service.name": settings.service_name,
        "service.version": __version__,
    }))
    provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    return provider


def get_tracer(name: str = "handel") -> trace.Tracer:
    return trace.get_tracer(name, __version__)


@contextmanager
def phase_span(
    tracer: trace.Tracer, phase: str, **attributes: str | int
) -> Iterator[trace.Span]:
    """Span covering one lifecycle phase of an environment.

    Extra attributes are recorded under the ``handel.`` namespace.
    """
    with tracer.start_as_current_span(f"phase.{phase}") as span:
        span.set_attribute("handel.phase", phase)
        for key, value in attributes.items():
            span.set_attribute(f"handel.{key}", value)
        yield span
