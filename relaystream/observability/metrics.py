"""
relaystream - Prometheus Metrics

Metrics exposed:
- relaystream_calls_total: Counter of top-level resilient calls by outcome
- relaystream_sessions_total: Counter of streaming sessions by outcome
- relaystream_session_duration_seconds: Histogram of session wall-clock time
- relaystream_retries_total: Counter of retries by triggering error type
- relaystream_backoff_seconds: Histogram of backoff delays
- relaystream_network_wait_seconds: Histogram of waits for connectivity
- relaystream_tokens_total: Counter of tokens reported by the server

Usage:
    from relaystream.observability.metrics import get_metrics, render_metrics

    metrics = get_metrics()
    metrics.record_session(model="claude-sonnet-4-5", outcome="completed", duration_seconds=3.2)

    # Expose from whatever HTTP surface the application has
    body = render_metrics()
"""

from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    REGISTRY,
    generate_latest,
)

from ..core.models import Usage


class MetricsCollector:
    """
    Metrics collector using the Prometheus client.

    Pass a private CollectorRegistry in tests; the process-wide instance
    from get_metrics() registers on the default registry.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry

        self.calls_total = Counter(
            "relaystream_calls_total",
            "Top-level resilient streaming calls",
            labelnames=["model", "outcome"],
            registry=registry,
        )

        self.sessions_total = Counter(
            "relaystream_sessions_total",
            "Streaming sessions opened",
            labelnames=["model", "outcome"],
            registry=registry,
        )

        # Sessions are capped at five minutes by default
        self.session_duration = Histogram(
            "relaystream_session_duration_seconds",
            "Streaming session wall-clock duration",
            labelnames=["model"],
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, float("inf")),
            registry=registry,
        )

        self.retries_total = Counter(
            "relaystream_retries_total",
            "Retries performed after a retryable failure",
            labelnames=["model", "error_type"],
            registry=registry,
        )

        self.backoff_seconds = Histogram(
            "relaystream_backoff_seconds",
            "Backoff delay applied before a retry",
            buckets=(1.0, 2.5, 5.0, 10.0, 30.0, 60.0, float("inf")),
            registry=registry,
        )

        self.network_wait_seconds = Histogram(
            "relaystream_network_wait_seconds",
            "Time spent waiting for connectivity to return",
            labelnames=["outcome"],
            buckets=(0.1, 1.0, 5.0, 15.0, 30.0, 60.0, 120.0, float("inf")),
            registry=registry,
        )

        self.tokens_total = Counter(
            "relaystream_tokens_total",
            "Tokens reported by the server",
            labelnames=["model", "type"],  # type = input/output/cache_read/cache_creation
            registry=registry,
        )

    def record_call(self, model: str, outcome: str) -> None:
        self.calls_total.labels(model=model, outcome=outcome).inc()

    def record_session(self, model: str, outcome: str, duration_seconds: float) -> None:
        self.sessions_total.labels(model=model, outcome=outcome).inc()
        self.session_duration.labels(model=model).observe(duration_seconds)

    def record_retry(self, model: str, error_type: str, backoff_seconds: float) -> None:
        self.retries_total.labels(model=model, error_type=error_type).inc()
        self.backoff_seconds.observe(backoff_seconds)

    def record_network_wait(self, restored: bool, duration_seconds: float) -> None:
        outcome = "restored" if restored else "timeout"
        self.network_wait_seconds.labels(outcome=outcome).observe(duration_seconds)

    def record_usage(self, model: str, usage: Optional[Usage]) -> None:
        if usage is None:
            return
        counts = {
            "input": usage.input_tokens,
            "output": usage.output_tokens,
            "cache_read": usage.cache_read_input_tokens,
            "cache_creation": usage.cache_creation_input_tokens,
        }
        for token_type, count in counts.items():
            if count > 0:
                self.tokens_total.labels(model=model, type=token_type).inc(count)


_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get the process-wide collector, creating it on first use."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def render_metrics(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Prometheus exposition text for the given (or default) registry."""
    if registry is None:
        registry = get_metrics().registry
    return generate_latest(registry)
