"""
Configuration module for MQTT Stress.
Contains the run configuration dataclass, broker URL parsing and environment loading.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlsplit

from mqtt_stress.models.worker_config import PayloadMode, WorkerConfig
from mqtt_stress.utils.constants import (
    BROKER_SCHEMES, DEFAULT_CLIENT_ID, DEFAULT_PAYLOAD, DEFAULT_TOPIC_NAMESPACE,
    DEFAULT_WORKERS, ENV_PASSWORD, ENV_URL, ENV_USERNAME, INCREMENT_START,
)


class ConfigError(ValueError):
    """Fatal pre-run configuration problem (bad URL, bad duration, ...)."""


@dataclass(frozen=True)
class BrokerAddress:
    """Broker endpoint resolved from a scheme://host:port URL."""
    scheme: str
    host: str
    port: int
    transport: str = "tcp"
    use_tls: bool = False
    path: str = ""


def parse_broker_url(url: str) -> BrokerAddress:
    """
    Parse a broker URL of the form scheme://host:port.

    Raises:
        ConfigError: If the URL is empty, has an unsupported scheme, no host or a bad port
    """
    if not url:
        raise ConfigError("missing url")

    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    if scheme not in BROKER_SCHEMES:
        supported = ", ".join(sorted(BROKER_SCHEMES))
        raise ConfigError(f"unsupported url scheme {parts.scheme!r} in {url!r}, expected one of: {supported}")
    if not parts.hostname:
        raise ConfigError(f"missing host in url {url!r}")

    transport, use_tls, default_port = BROKER_SCHEMES[scheme]
    try:
        port = parts.port or default_port
    except ValueError as e:
        raise ConfigError(f"invalid port in url {url!r}: {e}") from e

    return BrokerAddress(
        scheme=scheme,
        host=parts.hostname,
        port=port,
        transport=transport,
        use_tls=use_tls,
        path=parts.path if transport == "websockets" else "",
    )


def resolve_payload_settings(increment: bool, fields: str, payload: str) -> Tuple[str, PayloadMode]:
    """Apply payload precedence: increment > fields > payload > default static payload."""
    if increment:
        return INCREMENT_START, PayloadMode.INCREMENTING
    if fields:
        return fields, PayloadMode.GENERATED
    if payload:
        return payload, PayloadMode.STATIC
    return DEFAULT_PAYLOAD, PayloadMode.STATIC


@dataclass
class StressConfig:
    """Configuration for a stress run."""
    url: str = ""
    username: str = ""
    password: str = ""

    workers: int = DEFAULT_WORKERS
    message_delay: float = 0.5   # seconds
    run_for: float = 15.0        # seconds

    payload_mode: PayloadMode = PayloadMode.STATIC
    payload: str = DEFAULT_PAYLOAD

    client_id: str = DEFAULT_CLIENT_ID
    topic_namespace: str = DEFAULT_TOPIC_NAMESPACE

    # Connection options
    connect_timeout: float = 10.0
    keepalive: int = 60
    publish_timeout: float = 10.0
    disconnect_grace_ms: int = 250
    ca_file_path: Optional[str] = None
    insecure_tls: bool = False

    report_interval: float = 1.0

    def validate(self) -> BrokerAddress:
        """Check the configuration, returning the parsed broker address."""
        address = parse_broker_url(self.url)
        if self.workers < 1:
            raise ConfigError(f"workers must be at least 1, got {self.workers}")
        if self.message_delay <= 0:
            raise ConfigError("message delay must be greater than zero")
        if self.run_for <= 0:
            raise ConfigError("run duration must be greater than zero")
        if not self.topic_namespace:
            raise ConfigError("topic namespace must not be empty")
        if self.ca_file_path and not os.path.exists(self.ca_file_path):
            raise ConfigError(f"CA file not found at '{self.ca_file_path}'")
        return address

    def worker_template(self) -> WorkerConfig:
        """Build the worker template every pool worker is derived from."""
        return WorkerConfig(
            client_id=self.client_id,
            url=self.url,
            message_delay=self.message_delay,
            username=self.username,
            password=self.password,
            payload_mode=self.payload_mode,
            payload=self.payload,
        )


def load_config_from_env(config: StressConfig) -> None:
    """Update broker URL and credentials from MQTT_STRESS_* environment variables."""
    logger = logging.getLogger(__name__)

    config.url = os.getenv(ENV_URL, config.url)
    config.username = os.getenv(ENV_USERNAME, config.username)
    config.password = os.getenv(ENV_PASSWORD, config.password)

    if os.getenv(ENV_URL):
        logger.debug(f"Broker url taken from {ENV_URL}: {config.url}")
