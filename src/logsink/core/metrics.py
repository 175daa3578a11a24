"""
Prometheus metrics collection.

In-memory counters per application; Prometheus handles storage.
Each collector owns its registry so several app instances can coexist.
"""

import time
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, Info


class MetricsCollector:
    """
    Centralized metrics collection for LogSink.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        # Service info
        self.service_info = Info(
            "logsink_service",
            "LogSink service information",
            registry=self.registry,
        )
        self.service_info.info({
            "version": "0.1.0",
            "service": "logsink",
        })

        # Batch metrics
        self.batches_total = Counter(
            "logsink_batches_total",
            "Total log batches handled by workers",
            ["app", "status"],
            registry=self.registry,
        )

        self.items_written_total = Counter(
            "logsink_items_written_total",
            "Total log items appended to log files",
            ["app"],
            registry=self.registry,
        )

        self.batch_size_items = Histogram(
            "logsink_batch_size_items",
            "Number of items per batch",
            buckets=[0, 1, 5, 10, 25, 50, 100, 250, 500, 1000],
            registry=self.registry,
        )

        # Log file metrics
        self.logfiles_opened_total = Counter(
            "logsink_logfiles_opened_total",
            "Total log files opened",
            ["app"],
            registry=self.registry,
        )

        self.logfile_errors_total = Counter(
            "logsink_logfile_errors_total",
            "Total log file errors",
            ["app", "operation"],
            registry=self.registry,
        )

        # Config metrics
        self.config_reloads_total = Counter(
            "logsink_config_reloads_total",
            "Total configuration reloads",
            ["app", "outcome"],
            registry=self.registry,
        )

        # Worker metrics
        self.workers_active = Gauge(
            "logsink_workers_active",
            "Current number of application workers",
            registry=self.registry,
        )

        self.workers_evicted_total = Counter(
            "logsink_workers_evicted_total",
            "Total workers evicted",
            ["reason"],
            registry=self.registry,
        )

        self.uptime_seconds = Gauge(
            "logsink_uptime_seconds",
            "Service uptime in seconds",
            registry=self.registry,
        )

        # Track start time for uptime calculation
        self._start_time = time.time()

    def record_batch(self, app: str, status: str, items_count: int, items_written: int) -> None:
        """Record the outcome of one batch."""
        self.batches_total.labels(app=app, status=status).inc()
        self.batch_size_items.observe(items_count)
        if items_written > 0:
            self.items_written_total.labels(app=app).inc(items_written)

    def record_logfile_opened(self, app: str) -> None:
        self.logfiles_opened_total.labels(app=app).inc()

    def record_logfile_error(self, app: str, operation: str) -> None:
        self.logfile_errors_total.labels(app=app, operation=operation).inc()

    def record_config_reload(self, app: str, outcome: str) -> None:
        self.config_reloads_total.labels(app=app, outcome=outcome).inc()

    def set_workers_active(self, count: int) -> None:
        self.workers_active.set(count)

    def record_worker_evicted(self, reason: str) -> None:
        self.workers_evicted_total.labels(reason=reason).inc()

    def update_system_metrics(self) -> None:
        """Update system-level metrics."""
        self.uptime_seconds.set(time.time() - self._start_time)
