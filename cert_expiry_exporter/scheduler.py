"""
Periodic check scheduler for Certificate Expiry Exporter.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

from cert_expiry_exporter.checker import EndpointChecker
from cert_expiry_exporter.config import Config, ConfigError, EndpointConfig, load_config
from cert_expiry_exporter.logger import get_logger, log_cycle_complete, log_cycle_start
from cert_expiry_exporter.metrics import MetricsCollector
from cert_expiry_exporter.store import CheckStatus, MetricStore


class CheckScheduler:
    """
    Drives the EndpointChecker over every configured endpoint, forever.

    The configuration file is re-read at the start of every cycle so
    endpoints can be added without a restart. Entries for endpoints that
    disappear from the file are kept in the store.
    """

    def __init__(
        self,
        config: Config,
        store: MetricStore,
        checker: EndpointChecker,
        config_path: Optional[str] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.config = config
        self.store = store
        self.checker = checker
        self.config_path = config_path
        self.metrics = metrics
        self.logger = get_logger("scheduler")

        self.endpoints: List[EndpointConfig] = list(config.urls)
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._cycle_lock: Optional[asyncio.Lock] = None  # Initialize lock lazily in async context
        self._cycle_count = 0
        self._last_cycle_time: Optional[float] = None
        self._last_cycle_summary: Optional[Dict[str, Any]] = None

    def initialize_store(self, endpoints: Optional[List[EndpointConfig]] = None) -> int:
        """
        Seed the sentinel for every endpoint without an entry.

        Returns:
            Number of entries created
        """
        created = 0
        for endpoint in endpoints if endpoints is not None else self.endpoints:
            if self.store.initialize(endpoint.key):
                created += 1
        if created:
            self.logger.debug(f"Initialized {created} endpoint(s) with the sentinel value")
        return created

    def reload_endpoints(self) -> List[EndpointConfig]:
        """
        Re-read the endpoint list from the configuration file.

        Raises:
            ConfigError: the file could not be loaded and exit_on_reload_failure is set
        """
        if not self.config_path:
            return self.endpoints

        try:
            new_config = load_config(self.config_path)
        except (ConfigError, FileNotFoundError) as e:
            if self.config.exit_on_reload_failure:
                self.logger.critical(f"Error reading config file: {e}")
                raise ConfigError(str(e)) from e
            self.logger.error(
                f"Error reading config file, keeping {len(self.endpoints)} known endpoint(s): {e}"
            )
            return self.endpoints

        if len(new_config.urls) != len(self.endpoints):
            self.logger.info(
                f"Endpoint count changed from {len(self.endpoints)} to {len(new_config.urls)}"
            )
        self.endpoints = list(new_config.urls)
        return self.endpoints

    async def run_cycle(self, reload: bool = True) -> Dict[str, Any]:
        """
        Perform one full pass over all endpoints.

        Args:
            reload: Re-read the configuration file before checking

        Returns:
            Cycle summary
        """
        if self._cycle_lock is None:
            self._cycle_lock = asyncio.Lock()

        # Manual triggers and the loop never overlap
        async with self._cycle_lock:
            endpoints = self.reload_endpoints() if reload else self.endpoints
            self.initialize_store(endpoints)

            start_time = time.time()
            log_cycle_start(self.logger, len(endpoints))

            counts = await self.checker.check_all(endpoints, workers=self.config.workers)

            duration = time.time() - start_time
            failures = len(endpoints) - counts[CheckStatus.OK.value]

            if self.metrics:
                self.metrics.update_cycle_metrics(duration, len(endpoints), failures)

            log_cycle_complete(self.logger, duration, len(endpoints), failures)

            self._cycle_count += 1
            self._last_cycle_time = time.time()
            self._last_cycle_summary = {
                "endpoints": len(endpoints),
                "ok": counts[CheckStatus.OK.value],
                "failed": failures,
                "statuses": counts,
                "duration": duration,
                "timestamp": self._last_cycle_time,
            }
            return self._last_cycle_summary

    async def start(self) -> None:
        """Start the periodic check loop."""
        if self._running:
            self.logger.warning("Scheduler is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        self.logger.info(f"Started endpoint checks - Interval: {self.config.check_interval}")

    async def stop(self) -> None:
        """Stop the check loop."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except (asyncio.CancelledError, ConfigError):
                pass

        self.logger.info("Scheduler stopped")

    async def wait(self) -> None:
        """
        Block until the check loop ends.

        Raises:
            ConfigError: the loop ended on a fatal configuration reload
        """
        if self._task is None:
            return
        # Shielded so cancelling a waiter leaves the loop running
        await asyncio.shield(self._task)

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    async def _loop(self) -> None:
        """Main check loop. A fatal configuration error ends it."""
        while self._running:
            try:
                await self.run_cycle()
            except ConfigError:
                self._running = False
                raise
            except Exception as e:
                self.logger.error(f"Error in check loop: {e}")
            await asyncio.sleep(self.config.check_interval_seconds)

    async def get_health_status(self) -> Dict[str, Any]:
        """Get scheduler health status."""
        return {
            "scheduler": {
                "running": self._running and self._task is not None and not self._task.done(),
                "check_interval": self.config.check_interval,
                "endpoints_configured": len(self.endpoints),
                "cycles_completed": self._cycle_count,
                "last_cycle_time": self._last_cycle_time,
                "last_cycle": self._last_cycle_summary,
            }
        }
