#!/usr/bin/env python3
"""
Certificate Expiry Exporter - Main Application Entry Point
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import uvicorn
from fastapi import FastAPI

from cert_expiry_exporter import __version__
from cert_expiry_exporter.api import create_app
from cert_expiry_exporter.checker import EndpointChecker
from cert_expiry_exporter.config import Config, create_example_config, load_config
from cert_expiry_exporter.logger import setup_logging
from cert_expiry_exporter.metrics import MetricsCollector
from cert_expiry_exporter.scheduler import CheckScheduler
from cert_expiry_exporter.store import MetricStore

DEFAULT_CONFIG_FILES = ("config.yaml", "config.yml", "config.json")


class CertExpiryExporter:
    """Main application class for Certificate Expiry Exporter."""

    def __init__(self, config_path: Optional[str] = None, dry_run: bool = False):
        self.config: Optional[Config] = None
        self.store: Optional[MetricStore] = None
        self.metrics: Optional[MetricsCollector] = None
        self.checker: Optional[EndpointChecker] = None
        self.scheduler: Optional[CheckScheduler] = None
        self.app: Optional[FastAPI] = None
        self.config_path = config_path
        self.dry_run = dry_run
        self.logger = logging.getLogger(__name__)

    def initialize(self) -> None:
        """Initialize all application components."""
        # Configuration errors are fatal and propagate to the caller
        self.config = load_config(self.config_path)

        setup_logging(self.config)
        self.logger.info("Initializing Certificate Expiry Exporter")

        self.store = MetricStore()
        self.metrics = MetricsCollector(self.store, metric_name=self.config.metric_name)
        self.checker = EndpointChecker(
            store=self.store,
            timeout=self.config.request_timeout_seconds,
            method=self.config.request_method,
        )
        self.scheduler = CheckScheduler(
            config=self.config,
            store=self.store,
            checker=self.checker,
            config_path=self.config_path,
            metrics=self.metrics,
        )

        # Every endpoint reports the sentinel before the first scrape
        self.scheduler.initialize_store()

        self.app = create_app(
            store=self.store, metrics=self.metrics, scheduler=self.scheduler, config=self.config
        )

        self.logger.info(
            f"Certificate Expiry Exporter initialized - Endpoints: {len(self.config.urls)}"
        )

    async def run(self) -> int:
        """
        Run the exporter until shutdown.

        Returns:
            Process exit code
        """
        if not self.app:
            self.initialize()

        assert self.config is not None, "Config should be initialized"
        assert self.scheduler is not None, "Scheduler should be initialized"

        if self.dry_run:
            self.logger.info("Running in dry-run mode - checking endpoints once")
            await self.scheduler.run_cycle(reload=False)
            self._print_snapshot()
            return 0

        server = uvicorn.Server(
            uvicorn.Config(
                app=self.app,  # type: ignore[arg-type]
                host=self.config.bind_address,
                port=self.config.port,
                log_level=self.config.log_level.lower(),
                access_log=False,
            )
        )

        self.logger.info(f"Starting server on {self.config.bind_address}:{self.config.port}")

        await self.scheduler.start()
        server_task = asyncio.create_task(self._serve(server))
        scheduler_task = asyncio.create_task(self.scheduler.wait())

        exit_code = 0
        try:
            done, _ = await asyncio.wait(
                {server_task, scheduler_task}, return_when=asyncio.FIRST_COMPLETED
            )

            if scheduler_task in done:
                error = None if scheduler_task.cancelled() else scheduler_task.exception()
                self.logger.critical(f"Check scheduler terminated: {error}")
                server.should_exit = True
                await server_task
                exit_code = 1
            elif server_task.exception() is not None:
                self.logger.critical(f"Server failed: {server_task.exception()}")
                exit_code = 1
            elif not server.started:
                self.logger.critical(
                    f"Server could not start on {self.config.bind_address}:{self.config.port}"
                )
                exit_code = 1
        finally:
            if not scheduler_task.done():
                scheduler_task.cancel()
            await self.shutdown()

        return exit_code

    async def _serve(self, server: uvicorn.Server) -> None:
        # uvicorn calls sys.exit(1) when it cannot bind
        try:
            await server.serve()
        except SystemExit as e:
            self.logger.error(f"Server exited during startup with status {e.code}")

    def _print_snapshot(self) -> None:
        assert self.store is not None
        entries = [
            {"url": key.url, "origin_prometheus": key.origin, **measurement.to_dict()}
            for key, measurement in sorted(self.store.snapshot().items())
        ]
        click.echo(json.dumps(entries, indent=2))

    async def shutdown(self) -> None:
        """Gracefully shutdown all components."""
        self.logger.info("Starting graceful shutdown")

        if self.scheduler:
            await self.scheduler.stop()

        self.logger.info("Graceful shutdown completed")


def _default_config_path() -> Optional[str]:
    for candidate in DEFAULT_CONFIG_FILES:
        if Path(candidate).exists():
            return candidate
    return None


@click.command()
@click.option(
    "--config",
    "-f",
    type=click.Path(path_type=Path),
    help="Path to configuration file (default: config.yaml or config.json)",
)
@click.option("--version", "-v", is_flag=True, help="Show version information")
@click.option("--dry-run", is_flag=True, help="Check every endpoint once, print results and exit")
@click.option(
    "--create-config",
    type=click.Path(path_type=Path),
    help="Write an example configuration file and exit",
)
def main(
    config: Optional[Path], version: bool, dry_run: bool, create_config: Optional[Path]
) -> None:
    """Certificate Expiry Exporter - Export days until remote certificate expiry to Prometheus."""

    if version:
        click.echo(f"Certificate Expiry Exporter v{__version__}")
        return

    if create_config:
        create_example_config(str(create_config))
        click.echo(f"Example configuration written to {create_config}")
        return

    config_path = str(config) if config else _default_config_path()
    if config_path is None:
        click.echo("Error: no configuration file given and none found", err=True)
        sys.exit(1)

    try:
        exporter = CertExpiryExporter(config_path, dry_run=dry_run)
        exporter.initialize()
        exit_code = asyncio.run(exporter.run())
    except KeyboardInterrupt:
        click.echo("\nShutdown requested by user")
        sys.exit(0)
    except Exception as e:
        click.echo(f"Application failed: {e}", err=True)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
