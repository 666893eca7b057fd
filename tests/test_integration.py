"""
Integration tests for Certificate Expiry Exporter.

These tests drive the application the way the process entry point does:
- Startup from a configuration file
- Sentinel values before the first cycle
- A full check cycle against mocked remote endpoints
- Exit codes of the server mode
- Command line handling
"""

import asyncio
import json
import socket
from datetime import datetime, timedelta

import httpx
import pytest
import yaml
from click.testing import CliRunner
from fastapi.testclient import TestClient

from cert_expiry_exporter.checker import days_until, round_days
from cert_expiry_exporter.config import ConfigError
from cert_expiry_exporter.store import SENTINEL, CheckStatus, EndpointKey
from main import CertExpiryExporter, main

ENDPOINT_A = "http://partner-a.local/api/cert"
ENDPOINT_B = "http://partner-b.local/api/cert"


def remote_handler(date_limits):
    """Answer each host with its DateLimit, or time out when None."""

    def handler(request):
        date_limit = date_limits[str(request.url)]
        if date_limit is None:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(
            200,
            json={
                "status": 200,
                "message": "ok",
                "data": {"AuthorizerDate": "2024-01-01 00:00:00", "DateLimit": date_limit},
                "error": None,
            },
        )

    return handler


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "urls": [
                    {"url": ENDPOINT_A, "label": "Partner A", "origin_prometheus": "prom-a"},
                    {"url": ENDPOINT_B, "label": "Partner B", "origin_prometheus": "prom-b"},
                ]
            }
        )
    )
    return path



def free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def write_server_config(path, port):
    path.write_text(
        json.dumps(
            {
                "urls": [{"url": ENDPOINT_A, "origin_prometheus": "prom-a"}],
                "bind_address": "127.0.0.1",
                "port": port,
                "check_interval": "1h",
            }
        )
    )

class TestEndToEnd:
    """Test full cycles through the assembled application."""

    def test_startup_initializes_sentinels(self, config_file):
        """Test every endpoint is scraped as -1 right after startup."""
        exporter = CertExpiryExporter(str(config_file))
        exporter.initialize()

        client = TestClient(exporter.app)
        text = client.get("/metrics").text

        assert f'origin_prometheus="prom-a",url="{ENDPOINT_A}"}} -1.0' in text
        assert f'origin_prometheus="prom-b",url="{ENDPOINT_B}"}} -1.0' in text

    @pytest.mark.asyncio
    async def test_one_cycle_far_future_and_timeout(self, config_file):
        """Test A reports a large positive value while B's timeout reports -1."""
        exporter = CertExpiryExporter(str(config_file), dry_run=True)
        exporter.initialize()
        exporter.checker.transport = httpx.MockTransport(
            remote_handler({ENDPOINT_A: "2099-01-01 00:00:00", ENDPOINT_B: None})
        )

        exit_code = await exporter.run()

        assert exit_code == 0
        snapshot = exporter.store.snapshot()
        assert len(snapshot) == 2

        a = snapshot[EndpointKey(ENDPOINT_A, "prom-a")]
        expected = round_days(days_until(datetime(2099, 1, 1), datetime.now()))
        assert a.status is CheckStatus.OK
        assert a.value > 20000
        assert abs(a.value - expected) <= 0.01

        b = snapshot[EndpointKey(ENDPOINT_B, "prom-b")]
        assert b.value == SENTINEL
        assert b.status is CheckStatus.TRANSPORT_ERROR

    @pytest.mark.asyncio
    async def test_date_limit_now_and_expired(self, config_file):
        """Test a DateLimit of now reports ~0 and a past one reports a negative value."""
        now = datetime.now().replace(microsecond=0)
        month_ago = now - timedelta(days=30)
        exporter = CertExpiryExporter(str(config_file), dry_run=True)
        exporter.initialize()
        exporter.checker.transport = httpx.MockTransport(
            remote_handler(
                {
                    ENDPOINT_A: now.strftime("%Y-%m-%d %H:%M:%S"),
                    ENDPOINT_B: month_ago.strftime("%Y-%m-%d %H:%M:%S"),
                }
            )
        )

        await exporter.run()

        snapshot = exporter.store.snapshot()
        assert abs(snapshot[EndpointKey(ENDPOINT_A, "prom-a")].value) <= 0.01
        expired = snapshot[EndpointKey(ENDPOINT_B, "prom-b")]
        assert expired.status is CheckStatus.OK
        expected = round_days(days_until(month_ago, datetime.now()))
        assert expired.value < -29
        assert abs(expired.value - expected) <= 0.01



class TestServerExit:
    """Test the exit codes of the long-running server mode."""

    @pytest.mark.asyncio
    async def test_unreadable_config_after_startup_exits_nonzero(self, tmp_path):
        """Test a config file that disappears after startup stops the server with status 1."""
        path = tmp_path / "config.json"
        write_server_config(path, free_port())
        exporter = CertExpiryExporter(str(path))
        exporter.initialize()
        exporter.checker.transport = httpx.MockTransport(
            remote_handler({ENDPOINT_A: "2099-01-01 00:00:00"})
        )
        path.unlink()

        exit_code = await asyncio.wait_for(exporter.run(), timeout=10)

        assert exit_code == 1
        assert not exporter.scheduler.task.cancelled()
        assert isinstance(exporter.scheduler.task.exception(), ConfigError)

    @pytest.mark.asyncio
    async def test_port_in_use_exits_nonzero(self, tmp_path):
        """Test failing to bind the listening port returns status 1."""
        path = tmp_path / "config.json"
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen()
            write_server_config(path, blocker.getsockname()[1])
            exporter = CertExpiryExporter(str(path))
            exporter.initialize()
            exporter.checker.transport = httpx.MockTransport(
                remote_handler({ENDPOINT_A: "2099-01-01 00:00:00"})
            )

            exit_code = await asyncio.wait_for(exporter.run(), timeout=10)

        assert exit_code == 1

class TestCommandLine:
    """Test the click entry point."""

    def test_version(self):
        """Test --version prints the version."""
        result = CliRunner().invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "Certificate Expiry Exporter v" in result.output

    def test_create_config(self, tmp_path):
        """Test --create-config writes a loadable example."""
        target = tmp_path / "example.yaml"

        result = CliRunner().invoke(main, ["--create-config", str(target)])

        assert result.exit_code == 0
        assert "urls" in yaml.safe_load(target.read_text())

    def test_missing_config_file_is_fatal(self, tmp_path):
        """Test a missing configuration file exits non-zero."""
        result = CliRunner().invoke(main, ["--config", str(tmp_path / "absent.json")])

        assert result.exit_code == 1

    def test_malformed_config_file_is_fatal(self, tmp_path):
        """Test a malformed configuration file exits non-zero."""
        path = tmp_path / "config.json"
        path.write_text('{"urls": [{"url": ')

        result = CliRunner().invoke(main, ["--config", str(path)])

        assert result.exit_code == 1
        assert "Application failed" in result.output

    def test_dry_run_with_no_endpoints(self, tmp_path):
        """Test --dry-run checks once and exits cleanly."""
        path = tmp_path / "config.yaml"
        path.write_text("urls: []\n")

        result = CliRunner().invoke(main, ["--config", str(path), "--dry-run"])

        assert result.exit_code == 0
        assert "[]" in result.output
