# apm_agent/exporters/prometheus.py - Agent self metrics
"""
Prometheus metrics describing the agent itself: captured and dropped events,
batch sizes and delivery outcomes. Optionally served over HTTP for scraping.
"""

from prometheus_client import (
    CollectorRegistry, Counter, Histogram, generate_latest, start_http_server
)
from typing import Optional
import logging


class AgentMetrics:
    """
    Agent self-instrumentation.

    Uses a private registry so several agents (e.g. in tests) can coexist.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize the metrics.

        Args:
            registry: Registry to register metrics in (default: a new one)
        """
        self.registry = registry or CollectorRegistry()
        self.logger = logging.getLogger(__name__)

        self.events_captured = Counter(
            'apm_agent_events_captured_total',
            'Error and exception events captured',
            ['kind'],
            registry=self.registry
        )

        self.capture_failures = Counter(
            'apm_agent_capture_failures_total',
            'Signals dropped because the event could not be recorded',
            ['kind'],
            registry=self.registry
        )

        self.executions = Counter(
            'apm_agent_executions_total',
            'Executions reported',
            ['type'],
            registry=self.registry
        )

        self.deliveries = Counter(
            'apm_agent_deliveries_total',
            'Batch delivery attempts by outcome',
            ['outcome'],
            registry=self.registry
        )

        self.batch_bytes = Histogram(
            'apm_agent_batch_bytes',
            'Size of posted batches in bytes',
            buckets=[512, 1024, 4096, 16384, 65536, 102400],
            registry=self.registry
        )

        self.delivery_duration = Histogram(
            'apm_agent_delivery_duration_seconds',
            'Time spent posting a batch',
            buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0],
            registry=self.registry
        )

    def start(self, port: int):
        """
        Start an HTTP server exposing the metrics.

        Args:
            port: Port to listen on
        """
        try:
            start_http_server(port, registry=self.registry)
            self.logger.info(f"Agent metrics available at http://localhost:{port}/metrics")
        except OSError as e:
            self.logger.error(f"Failed to start metrics server: {e}")
            raise

    def record_capture(self, kind: str):
        self.events_captured.labels(kind=kind).inc()

    def record_capture_failure(self, kind: str):
        self.capture_failures.labels(kind=kind).inc()

    def record_delivery(self, delivered: bool, size: int, duration: float):
        """
        Record a delivery attempt.

        Args:
            delivered: Whether the collector accepted the batch
            size: Batch size in bytes
            duration: Seconds spent in the POST
        """
        self.deliveries.labels(outcome='success' if delivered else 'failure').inc()
        self.batch_bytes.observe(size)
        self.delivery_duration.observe(duration)

    def value(self, name: str, labels: Optional[dict] = None) -> float:
        """Current value of a sample, 0.0 if it was never recorded"""
        result = self.registry.get_sample_value(name, labels or {})
        return result if result is not None else 0.0

    def get_metrics_text(self) -> str:
        """
        Get current metrics in Prometheus text format.

        Returns:
            Metrics as text
        """
        return generate_latest(self.registry).decode('utf-8')


_default_metrics: Optional[AgentMetrics] = None


def get_metrics() -> AgentMetrics:
    """Process-wide metrics instance"""
    global _default_metrics
    if _default_metrics is None:
        _default_metrics = AgentMetrics()
    return _default_metrics
