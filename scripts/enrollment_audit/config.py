"""Configuration via environment variables with cloud-native secret support.

Supports:
  - Environment variables (local dev)
  - .env files
  - AWS Secrets Manager (aws-secret://name#key)
  - GCP Secret Manager (gcp-secret://name)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from scripts.enrollment_audit.auth import ConnectionString
from scripts.enrollment_audit.secrets import resolve_connection_string

DEFAULT_DEVICE_ENDPOINT = "global.azure-devices-provisioning.net"


@dataclass(frozen=True)
class ProvisioningServiceConfig:
    connection_string: str
    id_scope: Optional[str] = None  # required only to register devices
    device_endpoint: str = DEFAULT_DEVICE_ENDPOINT


@dataclass(frozen=True)
class DeviceRegistryConfig:
    connection_string: str


@dataclass(frozen=True)
class ConcurrencyConfig:
    count_group_parallelism: int = 15
    fixture_parallelism: int = 10
    group_page_size: int = 1024
    registration_page_size: int = 5000
    progress_interval_s: float = 5.0
    throttle_fallback_delay_s: float = 60.0
    http_timeout_s: float = 30.0


@dataclass(frozen=True)
class SchedulerConfig:
    count_interval_min: int = 60
    misfire_grace_time: int = 300
    max_retries: int = 3


@dataclass(frozen=True)
class AuditConfig:
    provisioning: ProvisioningServiceConfig
    device_registry: Optional[DeviceRegistryConfig] = None  # required for teardown
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    fixture_key_seed: str = "testing"


def _positive_int(name: str, default: int) -> int:
    value = int(os.environ.get(name, str(default)))
    if value < 1:
        raise ValueError(f"{name} must be a positive integer")
    return value


def _positive_float(name: str, default: float) -> float:
    value = float(os.environ.get(name, str(default)))
    if value <= 0:
        raise ValueError(f"{name} must be positive")
    return value


def load_config() -> AuditConfig:
    """Load configuration from environment variables.

    In cloud environments, connection strings may be references resolved via
    AWS Secrets Manager or GCP Secret Manager. Locally, plain env vars or
    .env files are used.
    """
    load_dotenv()

    dps_conn = resolve_connection_string("DPS_CONNECTION_STRING")
    if not dps_conn:
        raise ValueError("DPS_CONNECTION_STRING environment variable is required")
    ConnectionString.parse(dps_conn)  # fail fast on a malformed value

    provisioning = ProvisioningServiceConfig(
        connection_string=dps_conn,
        id_scope=os.environ.get("DPS_ID_SCOPE") or None,
        device_endpoint=os.environ.get("DPS_DEVICE_ENDPOINT", DEFAULT_DEVICE_ENDPOINT),
    )

    # Device registry (optional) -- only teardown needs it
    device_registry = None
    hub_conn = resolve_connection_string("IOTHUB_CONNECTION_STRING")
    if hub_conn:
        ConnectionString.parse(hub_conn)
        device_registry = DeviceRegistryConfig(connection_string=hub_conn)

    concurrency = ConcurrencyConfig(
        count_group_parallelism=_positive_int("COUNT_GROUP_PARALLELISM", 15),
        fixture_parallelism=_positive_int("FIXTURE_PARALLELISM", 10),
        group_page_size=_positive_int("GROUP_PAGE_SIZE", 1024),
        registration_page_size=_positive_int("REGISTRATION_PAGE_SIZE", 5000),
        progress_interval_s=_positive_float("PROGRESS_INTERVAL_S", 5.0),
        throttle_fallback_delay_s=_positive_float("THROTTLE_FALLBACK_DELAY_S", 60.0),
        http_timeout_s=_positive_float("HTTP_TIMEOUT_S", 30.0),
    )

    scheduler = SchedulerConfig(
        count_interval_min=_positive_int("COUNT_INTERVAL_MIN", 60),
        misfire_grace_time=_positive_int("MISFIRE_GRACE_TIME", 300),
        max_retries=int(os.environ.get("SCHEDULER_MAX_RETRIES", "3")),
    )

    return AuditConfig(
        provisioning=provisioning,
        device_registry=device_registry,
        concurrency=concurrency,
        scheduler=scheduler,
        fixture_key_seed=os.environ.get("FIXTURE_KEY_SEED", "testing"),
    )
