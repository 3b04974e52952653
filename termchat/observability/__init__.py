"""
termchat - Observability Module

Structured logging and OpenTelemetry tracing.
"""

from .logging import (
    LogContext,
    StructuredLogger,
    TimedOperation,
    get_logger,
    setup_logging,
    setup_logging_from_env,
)
from .tracing import (
    TracingManager,
    get_tracing_manager,
    record_exception,
    setup_tracing,
    start_provider_span,
)

__all__ = [
    "LogContext",
    "StructuredLogger",
    "TimedOperation",
    "get_logger",
    "setup_logging",
    "setup_logging_from_env",
    "TracingManager",
    "get_tracing_manager",
    "record_exception",
    "setup_tracing",
    "start_provider_span",
]
