"""Shared fixtures for unit tests."""

import pytest

from fakes import (
    DPS_CONNECTION_STRING,
    HUB_CONNECTION_STRING,
    FakeDeviceProvisioning,
    FakeDeviceRegistry,
    FakeProvisioningService,
    RecordingSleep,
)


@pytest.fixture
def service():
    return FakeProvisioningService()


@pytest.fixture
def registry():
    return FakeDeviceRegistry()


@pytest.fixture
def provisioning():
    return FakeDeviceProvisioning()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def audit_env(monkeypatch):
    """Minimal environment for load_config()."""
    for name in (
        "DPS_ID_SCOPE",
        "DPS_DEVICE_ENDPOINT",
        "COUNT_GROUP_PARALLELISM",
        "FIXTURE_PARALLELISM",
        "GROUP_PAGE_SIZE",
        "REGISTRATION_PAGE_SIZE",
        "PROGRESS_INTERVAL_S",
        "THROTTLE_FALLBACK_DELAY_S",
        "HTTP_TIMEOUT_S",
        "COUNT_INTERVAL_MIN",
        "MISFIRE_GRACE_TIME",
        "SCHEDULER_MAX_RETRIES",
        "FIXTURE_KEY_SEED",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("scripts.enrollment_audit.config.load_dotenv", lambda: None)
    monkeypatch.setenv("DPS_CONNECTION_STRING", DPS_CONNECTION_STRING)
    monkeypatch.setenv("IOTHUB_CONNECTION_STRING", HUB_CONNECTION_STRING)
    return monkeypatch
