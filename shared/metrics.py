"""
Shared metrics configuration for the credential issuer services.
"""

from prometheus_client import Counter, Histogram, Info, CollectorRegistry
from typing import Dict, Any, Optional
import time
from contextlib import contextmanager


class MetricsCollector:
    """Centralized metrics collector for services."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # One registry per collector so several services can live in one process
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
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

        if self.service_name == "session":
            self._setup_session_metrics()
        elif self.service_name == "audit":
            self._setup_audit_metrics()

    def _setup_session_metrics(self):
        """Set up session-service metrics."""
        self._metrics["sessions_created_total"] = Counter(
            "sessions_created_total",
            "Total sessions created",
            ["client_id"],
            registry=self.registry
        )

        self._metrics["authorization_codes_issued_total"] = Counter(
            "authorization_codes_issued_total",
            "Total authorization codes issued",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["audit_events_published_total"] = Counter(
            "audit_events_published_total",
            "Total audit events handed to the channel",
            ["event_name", "status"],
            registry=self.registry
        )

    def _setup_audit_metrics(self):
        """Set up audit-consumer metrics."""
        self._metrics["audit_records_persisted_total"] = Counter(
            "audit_records_persisted_total",
            "Total audit records written",
            registry=self.registry
        )

        self._metrics["audit_records_failed_total"] = Counter(
            "audit_records_failed_total",
            "Total audit messages reported as failed",
            ["reason"],
            registry=self.registry
        )

        self._metrics["audit_messages_redelivered_total"] = Counter(
            "audit_messages_redelivered_total",
            "Total failed audit messages handed back to the channel",
            ["outcome"],
            registry=self.registry
        )

        self._metrics["audit_batch_duration_seconds"] = Histogram(
            "audit_batch_duration_seconds",
            "Audit batch processing duration in seconds",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

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

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            if operation_name in self._metrics:
                metric = self._metrics[operation_name]
                (metric.labels(**labels) if labels else metric).observe(duration)

    def increment_counter(self, metric_name: str, amount: float = 1, **labels):
        """Increment a counter metric."""
        if metric_name in self._metrics:
            metric = self._metrics[metric_name]
            (metric.labels(**labels) if labels else metric).inc(amount)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
