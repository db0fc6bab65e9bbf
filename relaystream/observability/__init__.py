"""
relaystream - Observability Module

- Prometheus metrics (Counter, Histogram)
- OpenTelemetry tracing
- Structured JSON logging with context injection
"""

from .metrics import (
    MetricsCollector,
    get_metrics,
    render_metrics,
)
from .tracing import (
    get_tracer,
    setup_tracing,
)
from .logging import (
    JSONFormatter,
    LogContext,
    StructuredLogger,
    TimedOperation,
    get_logger,
    setup_logging,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "render_metrics",
    # Tracing
    "get_tracer",
    "setup_tracing",
    # Logging
    "JSONFormatter",
    "LogContext",
    "StructuredLogger",
    "TimedOperation",
    "get_logger",
    "setup_logging",
]
