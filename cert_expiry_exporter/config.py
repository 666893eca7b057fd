"""
Configuration management for Certificate Expiry Exporter.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cert_expiry_exporter.store import EndpointKey


class ConfigError(Exception):
    """Raised when the configuration file cannot be read or validated."""


class EndpointConfig(BaseModel):
    """One monitored endpoint."""

    model_config = ConfigDict(frozen=True)

    url: str
    label: str = ""
    origin_prometheus: str = ""

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Reject blank endpoint addresses."""
        if not v or not v.strip():
            raise ValueError("url cannot be empty")
        return v.strip()

    @property
    def key(self) -> EndpointKey:
        """Composite identity under which the endpoint's value is stored."""
        return EndpointKey(self.url, self.origin_prometheus)


class Config(BaseModel):
    """Configuration model for Certificate Expiry Exporter."""

    # Monitored endpoints
    urls: List[EndpointConfig] = Field(default_factory=list)

    # Server settings
    port: int = Field(default=18000, ge=1, le=65535)
    bind_address: str = Field(default="0.0.0.0")  # nosec B104

    # Check settings
    check_interval: str = Field(default="10h")
    request_timeout: str = Field(default="30s")
    request_method: str = Field(default="POST")
    workers: int = Field(default=8, ge=1, le=64)
    exit_on_reload_failure: bool = Field(default=True)

    # Exposition
    metric_name: str = Field(default="dap_abi_cert_expired_day")

    # Logging
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("request_method")
    @classmethod
    def validate_request_method(cls, v: str) -> str:
        """Only body-less request methods are supported."""
        valid_methods = {"GET", "POST"}
        if v.upper() not in valid_methods:
            raise ValueError(f"request_method must be one of {valid_methods}, got '{v}'")
        return v.upper()

    @field_validator("metric_name")
    @classmethod
    def validate_metric_name(cls, v: str) -> str:
        """Validate the gauge name against the Prometheus naming rules."""
        if not re.match(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$", v):
            raise ValueError(f"Invalid metric name: {v}")
        return v

    @field_validator("check_interval", "request_timeout")
    @classmethod
    def validate_duration(cls, v: str) -> str:
        """Validate duration format (e.g., '5m', '1h', '30s')."""
        if not v:
            raise ValueError("Duration cannot be empty")

        pattern = r"^\d+[smhd]$"
        if not re.match(pattern, v):
            raise ValueError("Duration must be in format like '5m', '1h', '30s', '1d'")
        if int(v[:-1]) == 0:
            raise ValueError("Duration must be greater than zero")
        return v

    def parse_duration_seconds(self, duration: str) -> int:
        """Parse duration string to seconds."""
        match = re.match(r"^(\d+)([smhd])$", duration)
        if not match:
            raise ValueError(f"Invalid duration format: {duration}")

        value, unit = match.groups()

        multipliers = {"s": 1, "m": 60, "h": 3600, "d": 86400}

        return int(value) * multipliers[unit]

    @property
    def check_interval_seconds(self) -> int:
        """Get check interval in seconds."""
        return self.parse_duration_seconds(self.check_interval)

    @property
    def request_timeout_seconds(self) -> int:
        """Get outbound request timeout in seconds."""
        return self.parse_duration_seconds(self.request_timeout)


def load_config(config_path: Optional[str] = None) -> Config:
    """
    Load configuration from file and environment variables.

    The file may be YAML or JSON. A document that is a bare list is
    treated as the list of endpoints.

    Args:
        config_path: Path to configuration file

    Returns:
        Config object

    Raises:
        FileNotFoundError: the file does not exist
        ConfigError: the file cannot be read, parsed or validated
    """
    config_data: Dict[str, Any] = {}

    if config_path:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to read configuration file {config_path}: {e}") from e

        if isinstance(loaded, list):
            config_data = {"urls": loaded}
        elif isinstance(loaded, dict):
            config_data = loaded
        elif loaded is not None:
            raise ConfigError(
                f"Configuration file {config_path} must contain a mapping or a list of endpoints"
            )

    config_data.update(_get_env_overrides())

    try:
        return Config(**config_data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def _get_env_overrides() -> dict:
    """Get configuration overrides from environment variables."""
    env_mapping: Dict[str, tuple[str, Callable[[str], Any]]] = {
        "CERT_EXPORTER_PORT": ("port", int),
        "CERT_EXPORTER_BIND_ADDRESS": ("bind_address", str),
        "CERT_EXPORTER_CHECK_INTERVAL": ("check_interval", str),
        "CERT_EXPORTER_REQUEST_TIMEOUT": ("request_timeout", str),
        "CERT_EXPORTER_REQUEST_METHOD": ("request_method", str),
        "CERT_EXPORTER_WORKERS": ("workers", int),
        "CERT_EXPORTER_LOG_LEVEL": ("log_level", str),
        "CERT_EXPORTER_LOG_FILE": ("log_file", str),
        "CERT_EXPORTER_EXIT_ON_RELOAD_FAILURE": (
            "exit_on_reload_failure",
            lambda x: x.lower() in ("true", "1", "yes"),
        ),
    }

    overrides = {}
    for env_var, (config_key, converter) in env_mapping.items():
        value = os.getenv(env_var)
        if value is not None:
            try:
                overrides[config_key] = converter(value)
            except (ValueError, TypeError) as e:
                logging.warning(f"Invalid value for {env_var}: {value} - {e}")

    return overrides


def create_example_config(output_path: str = "config.example.yaml") -> None:
    """Create an example configuration file."""
    example_config = {
        "port": 18000,
        "bind_address": "0.0.0.0",  # nosec B104
        "check_interval": "10h",
        "request_timeout": "30s",
        "request_method": "POST",
        "workers": 8,
        "log_level": "INFO",
        "exit_on_reload_failure": True,
        "urls": [
            {
                "url": "https://partner-a.example.com/api/cert/status",
                "label": "Partner A",
                "origin_prometheus": "prod",
            },
            {
                "url": "https://partner-b.example.com/api/cert/status",
                "label": "Partner B",
                "origin_prometheus": "staging",
            },
        ],
    }

    with open(output_path, "w", encoding="utf-8") as f:
        yaml.dump(example_config, f, default_flow_style=False, sort_keys=False)
