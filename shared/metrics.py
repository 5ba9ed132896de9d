"""
Shared metrics configuration for the Access Permissions engine.
"""

from typing import Dict, Any, Optional

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, REGISTRY, start_http_server


class MetricsCollector:
    """Centralized metrics collector.

    With ``registry=None`` the metrics are created unregistered, so several
    collectors can live in one process (one per engine instance, one per test).
    Pass ``prometheus_client.REGISTRY`` or a dedicated registry to expose them.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up common and permission-engine metrics."""

        # Error metrics
        self._metrics["errors_total"] = Counter(
            "errors_total",
            "Total errors",
            ["error_type", "service"],
            registry=self.registry
        )

        # Decision metrics
        self._metrics["permission_checks_total"] = Counter(
            "permission_checks_total",
            "Total permission checks",
            ["decision"],
            registry=self.registry
        )

        self._metrics["permission_check_duration_seconds"] = Histogram(
            "permission_check_duration_seconds",
            "Permission check duration in seconds",
            registry=self.registry
        )

        self._metrics["permission_loads_total"] = Counter(
            "permission_loads_total",
            "Total principal permission loads",
            ["status"],
            registry=self.registry
        )

        # Cache metrics
        self._metrics["permission_cache_hits_total"] = Counter(
            "permission_cache_hits_total",
            "Total decision cache hits",
            registry=self.registry
        )

        self._metrics["permission_cache_misses_total"] = Counter(
            "permission_cache_misses_total",
            "Total decision cache misses",
            registry=self.registry
        )

        self._metrics["permission_cache_evictions_total"] = Counter(
            "permission_cache_evictions_total",
            "Total decision cache LRU evictions",
            registry=self.registry
        )

        self._metrics["permission_cache_size"] = Gauge(
            "permission_cache_size",
            "Number of entries held by the decision cache",
            registry=self.registry
        )

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        start_http_server(port, registry=self.registry or REGISTRY)

    def record_error(self, error_type: str, service: Optional[str] = None):
        """Record error metrics."""
        service_name = service or self.service_name
        self._metrics["errors_total"].labels(error_type=error_type, service=service_name).inc()

    def record_permission_check(self, decision: str, duration: float):
        """Record a permission decision and how long it took."""
        self._metrics["permission_checks_total"].labels(decision=decision).inc()
        self._metrics["permission_check_duration_seconds"].observe(duration)

    def record_load(self, status: str):
        """Record a principal load outcome."""
        self._metrics["permission_loads_total"].labels(status=status).inc()

    def record_cache_hit(self):
        self._metrics["permission_cache_hits_total"].inc()

    def record_cache_miss(self):
        self._metrics["permission_cache_misses_total"].inc()

    def record_cache_eviction(self):
        self._metrics["permission_cache_evictions_total"].inc()

    def set_cache_size(self, size: int):
        self._metrics["permission_cache_size"].set(size)
