"""
Shared metrics configuration for the Recipe Access Gateway.
"""

import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest


class MetricsCollector:
    """Centralized metrics collector for services.

    Each collector owns its registry so several service instances (tests,
    multiple apps in one process) never collide on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common metrics for the service."""

        self._metrics["service_info"] = Info(
            "service_info",
            "Service information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # HTTP metrics
        self._metrics["http_requests_total"] = Counter(
            "http_requests_total",
            "Total HTTP requests",
            ["method", "endpoint", "status_code"],
            registry=self.registry
        )

        self._metrics["http_request_duration_seconds"] = Histogram(
            "http_request_duration_seconds",
            "HTTP request duration in seconds",
            ["method", "endpoint"],
            registry=self.registry
        )

        self._metrics["health_check_total"] = Counter(
            "health_check_total",
            "Total health check requests",
            ["status"],
            registry=self.registry
        )

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_pipeline_metrics()

    def _setup_pipeline_metrics(self):
        """Set up request pipeline metrics."""
        self._metrics["rate_limit_decisions_total"] = Counter(
            "rate_limit_decisions_total",
            "Rate limiter admit/reject decisions",
            ["route_class", "decision"],
            registry=self.registry
        )

        self._metrics["response_cache_events_total"] = Counter(
            "response_cache_events_total",
            "Response cache events (hit, miss, store, stale, error, invalidate)",
            ["namespace", "event"],
            registry=self.registry
        )

        self._metrics["subscription_gate_decisions_total"] = Counter(
            "subscription_gate_decisions_total",
            "Subscription gate outcomes",
            ["mode", "outcome"],
            registry=self.registry
        )

        self._metrics["backing_store_errors_total"] = Counter(
            "backing_store_errors_total",
            "Backing store failures absorbed by the pipeline",
            ["component"],
            registry=self.registry
        )

        self._metrics["pipeline_stage_duration_seconds"] = Histogram(
            "pipeline_stage_duration_seconds",
            "Time spent in each pipeline stage",
            ["stage"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

    def record_http_request(self, method: str, endpoint: str, status_code: int, duration: float):
        """Record HTTP request metrics."""
        self._metrics["http_requests_total"].labels(
            method=method,
            endpoint=endpoint,
            status_code=str(status_code)
        ).inc()

        self._metrics["http_request_duration_seconds"].labels(
            method=method,
            endpoint=endpoint
        ).observe(duration)

    def record_health_check(self, status: str):
        """Record health check metrics."""
        self._metrics["health_check_total"].labels(status=status).inc()

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_store_error(self, component: str):
        self._metrics["backing_store_errors_total"].labels(component=component).inc()

    @contextmanager
    def time_stage(self, stage: str):
        """Context manager to time a pipeline stage."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            self._metrics["pipeline_stage_duration_seconds"].labels(stage=stage).observe(
                time.perf_counter() - start_time
            )

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
