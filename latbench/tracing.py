"""OpenTelemetry tracing helpers for the driver and responders.

Tracing is off unless `start_tracing` is called (``BENCH_TRACING=true``); until
then the API hands out no-op tracers, so spans on the request path cost next to
nothing. When enabled, spans are exported to the console.
"""

from __future__ import annotations

from typing import Dict, Mapping, Any

from opentelemetry import trace  # type: ignore
from opentelemetry.sdk.resources import Resource  # type: ignore
from opentelemetry.sdk.trace import TracerProvider  # type: ignore
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor  # type: ignore
from opentelemetry.trace import Tracer  # type: ignore
from opentelemetry.propagate import get_global_textmap, set_global_textmap, inject  # type: ignore
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator  # type: ignore


SERVICE_NAME = "latbench"


def start_tracing(service_name: str = SERVICE_NAME) -> Tracer:
    """Initialize a TracerProvider with a console exporter."""
    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)

    # Ensure W3C tracecontext propagator is used for headers
    set_global_textmap(TraceContextTextMapPropagator())

    return trace.get_tracer(service_name)


def get_tracer(service_name: str = SERVICE_NAME) -> Tracer:
    return trace.get_tracer(service_name)


def inject_headers(headers: Dict[str, Any] | None = None) -> Dict[str, Any]:
    """Inject the current context into AMQP headers."""
    carrier: Dict[str, Any] = {} if headers is None else dict(headers)
    inject(carrier)
    return carrier


def extract_context_from_headers(headers: Mapping[str, Any] | None):
    """Return a context object extracted from AMQP headers.

    Header values may arrive as bytes; they are decoded to strings first.
    """
    carrier: Dict[str, str] = {}
    if headers:
        for k, v in headers.items():
            if isinstance(v, bytes):
                v = v.decode("utf-8", "replace")
            carrier[str(k)] = v if isinstance(v, str) else str(v)
    return get_global_textmap().extract(carrier)
