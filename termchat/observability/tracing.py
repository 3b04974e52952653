"""
termchat - OpenTelemetry Tracing

One client span per provider call, with delta counts and finish reason
recorded as attributes.

Environment:
    TERMCHAT_TRACE=console   export finished spans to stderr

Usage:
    from termchat.observability.tracing import start_provider_span

    span = start_provider_span("google", "gemini-1.5-flash")
    try:
        span.set_attribute("termchat.deltas", 3)
    finally:
        span.end()
"""

import os
import sys
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.trace import SpanKind, Status, StatusCode

from .. import __version__

TRACE_ENV = "TERMCHAT_TRACE"


class TracingManager:
    """
    Owns the tracer provider for the process.

    The provider is kept local rather than installed globally so tests can
    build managers with in-memory exporters without fighting over global
    state.
    """

    _instance: Optional["TracingManager"] = None

    def __init__(
        self,
        service_name: str = "termchat",
        service_version: str = __version__,
        console_export: bool = False,
    ):
        resource = Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
        })
        self.provider = TracerProvider(resource=resource)

        if console_export:
            self.provider.add_span_processor(
                SimpleSpanProcessor(ConsoleSpanExporter(out=sys.stderr))
            )

        self.tracer = self.provider.get_tracer(service_name, service_version)

    @classmethod
    def get_instance(cls) -> "TracingManager":
        if cls._instance is None:
            cls._instance = cls(console_export=os.getenv(TRACE_ENV, "").lower() == "console")
        return cls._instance

    @classmethod
    def reset_instance(cls, instance: Optional["TracingManager"] = None):
        """Replace or clear the singleton (for testing)."""
        cls._instance = instance

    def shutdown(self):
        self.provider.shutdown()


def setup_tracing(console_export: Optional[bool] = None) -> TracingManager:
    """
    Setup tracing. Call once at startup.

    Console export is taken from TERMCHAT_TRACE when not given.
    """
    if console_export is None:
        console_export = os.getenv(TRACE_ENV, "").lower() == "console"
    manager = TracingManager(console_export=console_export)
    TracingManager.reset_instance(manager)
    return manager


def get_tracing_manager() -> TracingManager:
    return TracingManager.get_instance()


def record_exception(span: trace.Span, exception: BaseException):
    """Record an exception on a span and mark it failed."""
    span.record_exception(exception)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


def start_provider_span(provider: str, model: str, operation: str = "stream_chat") -> trace.Span:
    """
    Start a client span for one provider call. The caller must end it.

    The span is not made current: it outlives suspension points of an
    async generator, where attaching and detaching context would cross
    task boundaries.
    """
    return get_tracing_manager().tracer.start_span(
        f"provider.{operation}",
        kind=SpanKind.CLIENT,
        attributes={
            "termchat.provider": provider,
            "termchat.model": model,
            "termchat.operation": operation,
        },
    )
