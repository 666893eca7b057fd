"""
Certificate Expiry Exporter

Polls remote endpoints for their certificate DateLimit and exposes the
days remaining until expiry as a Prometheus gauge.
"""

__version__ = "1.0.0"
__author__ = "Certificate Expiry Exporter Team"
__description__ = "Prometheus exporter for remote certificate expiry dates"

from cert_expiry_exporter.config import Config, EndpointConfig
from cert_expiry_exporter.store import SENTINEL, CheckStatus, EndpointKey, MetricStore

__all__ = [
    "Config",
    "EndpointConfig",
    "SENTINEL",
    "CheckStatus",
    "EndpointKey",
    "MetricStore",
]
