"""
Prometheus metrics exposition for Certificate Expiry Exporter.
"""

import socket
import sys
import time
from typing import Any, Dict, Iterator

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from prometheus_client.core import GaugeMetricFamily, Metric

from cert_expiry_exporter.logger import get_logger
from cert_expiry_exporter.store import CheckStatus, MetricStore

DEFAULT_METRIC_NAME = "dap_abi_cert_expired_day"
ENDPOINT_LABELS = ["url", "origin_prometheus"]


class StoreCollector:
    """Renders one consistent MetricStore snapshot per scrape."""

    def __init__(self, store: MetricStore, metric_name: str = DEFAULT_METRIC_NAME) -> None:
        self.store = store
        self.metric_name = metric_name

    def collect(self) -> Iterator[Metric]:
        snapshot = self.store.snapshot()

        expiry = GaugeMetricFamily(
            self.metric_name,
            "Difference in days between DateLimit and current date",
            labels=ENDPOINT_LABELS,
        )
        status = GaugeMetricFamily(
            "cert_expiry_check_status",
            "Outcome of the most recent check (1 for the current status)",
            labels=ENDPOINT_LABELS + ["status"],
        )
        last_check = GaugeMetricFamily(
            "cert_expiry_last_check_timestamp",
            "Time of the most recent check (Unix timestamp)",
            labels=ENDPOINT_LABELS,
        )

        for key, measurement in sorted(snapshot.items()):
            labels = [key.url, key.origin]
            expiry.add_metric(labels, measurement.value)
            for candidate in CheckStatus:
                status.add_metric(
                    labels + [candidate.value], 1.0 if measurement.status is candidate else 0.0
                )
            if measurement.updated_at is not None:
                last_check.add_metric(labels, measurement.updated_at)

        yield expiry
        yield status
        yield last_check


class MetricsCollector:
    """Prometheus metrics for endpoint expiry values and application health."""

    def __init__(self, store: MetricStore, metric_name: str = DEFAULT_METRIC_NAME) -> None:
        self.logger = get_logger("metrics")
        self.registry = CollectorRegistry()
        self.store = store

        self.store_collector = StoreCollector(store, metric_name)
        self.registry.register(self.store_collector)

        # Cycle metrics
        self.cycle_duration_seconds = Histogram(
            "cert_expiry_cycle_duration_seconds",
            "Duration of a full check cycle",
            registry=self.registry,
        )

        self.last_cycle_timestamp = Gauge(
            "cert_expiry_last_cycle_timestamp",
            "Completion time of the last check cycle",
            registry=self.registry,
        )

        self.endpoints_total = Gauge(
            "cert_expiry_endpoints_total",
            "Number of endpoints checked in the last cycle",
            registry=self.registry,
        )

        self.check_failures = Gauge(
            "cert_expiry_check_failures",
            "Number of failed endpoint checks in the last cycle",
            registry=self.registry,
        )

        # Application metrics
        self.app_memory_bytes = Gauge(
            "app_memory_bytes",
            "Application memory usage in bytes",
            ["type"],
            registry=self.registry,
        )

        self.app_cpu_percent = Gauge(
            "app_cpu_percent", "Application CPU usage percentage", registry=self.registry
        )

        self.app_thread_count = Gauge(
            "app_thread_count", "Number of application threads", registry=self.registry
        )

        self.app_info = Info(
            "app_info",
            "Application information",
            ["hostname", "version", "python_version"],
            registry=self.registry,
        )

        self._last_system_update = 0.0
        self._system_update_interval = 30

        self.logger.info("Metrics collector initialized")

    def update_cycle_metrics(self, duration: float, endpoints: int, failures: int) -> None:
        """
        Update check cycle metrics.

        Args:
            duration: Cycle duration in seconds
            endpoints: Endpoints checked in the cycle
            failures: Checks that published the sentinel
        """
        try:
            self.cycle_duration_seconds.observe(duration)
            self.last_cycle_timestamp.set(int(time.time()))
            self.endpoints_total.set(endpoints)
            self.check_failures.set(failures)

            self.logger.debug(
                f"Cycle metrics updated - endpoints={endpoints} failures={failures}"
            )

        except Exception as e:
            self.logger.error(f"Failed to update cycle metrics: {e}")

    def update_system_metrics(self) -> None:
        """Update system and application metrics."""
        current_time = time.time()

        # Only update system metrics every N seconds to reduce overhead
        if current_time - self._last_system_update < self._system_update_interval:
            return

        try:
            process = psutil.Process()

            memory_info = process.memory_info()
            self.app_memory_bytes.labels(type="rss").set(int(memory_info.rss))
            self.app_memory_bytes.labels(type="vms").set(int(memory_info.vms))

            cpu_percent = process.cpu_percent()
            self.app_cpu_percent.set(cpu_percent)

            thread_count = process.num_threads()
            self.app_thread_count.set(int(thread_count))

            from cert_expiry_exporter import __version__

            self.app_info.labels(
                hostname=socket.gethostname(),
                version=__version__,
                python_version=f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            ).info({"platform": sys.platform, "process_id": str(process.pid)})

            self._last_system_update = current_time

        except Exception as e:
            self.logger.error(f"Failed to update system metrics: {e}")

    def get_metrics(self) -> str:
        """
        Get Prometheus metrics in text format.

        Returns:
            Metrics in Prometheus text format
        """
        self.update_system_metrics()
        return generate_latest(self.registry).decode("utf-8")

    def get_content_type(self) -> str:
        """Get content type for metrics endpoint."""
        return CONTENT_TYPE_LATEST

    def get_registry_status(self) -> Dict[str, Any]:
        """Get Prometheus registry status for health checks."""
        try:
            return {
                "prometheus_registry": {
                    "status": "healthy",
                    "series_count": len(self.store),
                    "last_update": self._last_system_update,
                }
            }
        except Exception as e:
            return {"prometheus_registry": {"status": "error", "error": str(e)}}
