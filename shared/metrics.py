"""
Shared metrics configuration for the User Console data layer.
"""

from typing import Dict, Any, Optional
import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, CollectorRegistry


class MetricsCollector:
    """Centralized metrics collector.

    Metrics are created against ``registry``; the default of ``None`` keeps
    them unregistered so several collectors can coexist (one per test, one
    per composition root).
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up metrics for the cache and mutation layers."""

        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        self._setup_cache_metrics()
        self._setup_mutation_metrics()

    def _setup_cache_metrics(self):
        """Set up read-through cache metrics."""
        self._metrics["cache_hits_total"] = Counter(
            "cache_hits_total",
            "Total cache hits",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["cache_misses_total"] = Counter(
            "cache_misses_total",
            "Total cache misses",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["cache_joins_total"] = Counter(
            "cache_joins_total",
            "Total loads joined onto an in-flight fetch",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["cache_stale_drops_total"] = Counter(
            "cache_stale_drops_total",
            "Fetch results discarded because the key was invalidated in flight",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["cache_fetch_errors_total"] = Counter(
            "cache_fetch_errors_total",
            "Total failed cache fetches",
            ["cache_type"],
            registry=self.registry
        )

        self._metrics["cache_fetch_duration_seconds"] = Histogram(
            "cache_fetch_duration_seconds",
            "Underlying fetch duration in seconds",
            ["cache_type"],
            registry=self.registry
        )

    def _setup_mutation_metrics(self):
        """Set up optimistic mutation metrics."""
        self._metrics["optimistic_rollbacks_total"] = Counter(
            "optimistic_rollbacks_total",
            "Optimistic updates rolled back by refetch",
            ["operation"],
            registry=self.registry
        )

        self._metrics["mutations_total"] = Counter(
            "mutations_total",
            "Total remote mutations",
            ["operation", "status"],
            registry=self.registry
        )

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.perf_counter()
        try:
            yield
        finally:
            duration = time.perf_counter() - start_time
            if operation_name in self._metrics:
                self._metrics[operation_name].labels(**labels).observe(duration)

    def increment_counter(self, metric_name: str, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            self._metrics[metric_name].labels(**labels).inc()


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
