"""Unit tests for environment configuration and secret resolution."""

import json
from unittest.mock import MagicMock

import pytest

from fakes import DPS_CONNECTION_STRING
from scripts.enrollment_audit.config import DEFAULT_DEVICE_ENDPOINT, load_config
from scripts.enrollment_audit.secrets import resolve_connection_string, resolve_secret


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self, audit_env):
        config = load_config()

        assert config.provisioning.connection_string == DPS_CONNECTION_STRING
        assert config.provisioning.id_scope is None
        assert config.provisioning.device_endpoint == DEFAULT_DEVICE_ENDPOINT
        assert config.device_registry is not None
        assert config.concurrency.count_group_parallelism == 15
        assert config.concurrency.fixture_parallelism == 10
        assert config.concurrency.group_page_size == 1024
        assert config.concurrency.registration_page_size == 5000
        assert config.concurrency.throttle_fallback_delay_s == 60.0
        assert config.scheduler.count_interval_min == 60
        assert config.scheduler.max_retries == 3
        assert config.fixture_key_seed == "testing"

    def test_overrides(self, audit_env):
        audit_env.setenv("DPS_ID_SCOPE", "0ne00ABC")
        audit_env.setenv("FIXTURE_PARALLELISM", "3")
        audit_env.setenv("REGISTRATION_PAGE_SIZE", "100")
        audit_env.setenv("FIXTURE_KEY_SEED", "seed")
        config = load_config()
        assert config.provisioning.id_scope == "0ne00ABC"
        assert config.concurrency.fixture_parallelism == 3
        assert config.concurrency.registration_page_size == 100
        assert config.fixture_key_seed == "seed"

    def test_device_registry_optional(self, audit_env):
        audit_env.delenv("IOTHUB_CONNECTION_STRING")
        assert load_config().device_registry is None

    def test_missing_connection_string(self, audit_env):
        audit_env.delenv("DPS_CONNECTION_STRING")
        with pytest.raises(ValueError, match="DPS_CONNECTION_STRING"):
            load_config()

    def test_malformed_connection_string(self, audit_env):
        audit_env.setenv("DPS_CONNECTION_STRING", "HostName=only-a-host")
        with pytest.raises(ValueError):
            load_config()

    @pytest.mark.parametrize("value", ["0", "-2", "many"])
    def test_invalid_parallelism(self, audit_env, value):
        audit_env.setenv("COUNT_GROUP_PARALLELISM", value)
        with pytest.raises(ValueError):
            load_config()

    def test_connection_string_from_secret_reference(self, audit_env):
        audit_env.setenv("DPS_CONNECTION_STRING", "aws-secret://audit#dps")
        audit_env.setattr(
            "scripts.enrollment_audit.secrets._resolve_aws_secret",
            lambda ref: DPS_CONNECTION_STRING if ref == "audit#dps" else "",
        )
        assert load_config().provisioning.connection_string == DPS_CONNECTION_STRING


class TestResolveSecret:
    """Tests for secret reference resolution."""

    def test_plain_value_passthrough(self):
        assert resolve_secret("HostName=h") == "HostName=h"

    def test_aws_json_key(self, monkeypatch):
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretString": json.dumps({"dps": "conn"})}
        factory = MagicMock(return_value=client)
        monkeypatch.setattr("boto3.client", factory)

        assert resolve_secret("aws-secret://audit#dps") == "conn"
        client.get_secret_value.assert_called_once_with(SecretId="audit")
        assert factory.call_args.args == ("secretsmanager",)

    def test_aws_whole_secret(self, monkeypatch):
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretString": "raw-value"}
        monkeypatch.setattr("boto3.client", MagicMock(return_value=client))
        assert resolve_secret("aws-secret://audit") == "raw-value"

    def test_gcp_named_secret(self, monkeypatch):
        client = MagicMock()
        client.access_secret_version.return_value.payload.data = b"gcp-conn"
        monkeypatch.setenv("GCP_PROJECT_ID", "proj")
        monkeypatch.setattr(
            "google.cloud.secretmanager.SecretManagerServiceClient", MagicMock(return_value=client)
        )

        assert resolve_secret("gcp-secret://dps-conn") == "gcp-conn"
        client.access_secret_version.assert_called_once_with(
            request={"name": "projects/proj/secrets/dps-conn/versions/latest"}
        )

    def test_aws_missing_field(self, monkeypatch):
        client = MagicMock()
        client.get_secret_value.return_value = {"SecretString": json.dumps({"hub": "conn"})}
        monkeypatch.setattr("boto3.client", MagicMock(return_value=client))
        with pytest.raises(ValueError, match="'dps'"):
            resolve_secret("aws-secret://audit#dps")

    def test_gcp_project_from_metadata_server(self, monkeypatch):
        """Without GCP_PROJECT_ID the Cloud Run metadata server names the project."""
        client = MagicMock()
        client.access_secret_version.return_value.payload.data = b"gcp-conn"
        monkeypatch.delenv("GCP_PROJECT_ID", raising=False)
        monkeypatch.setattr(
            "google.cloud.secretmanager.SecretManagerServiceClient", MagicMock(return_value=client)
        )
        metadata = MagicMock(return_value=MagicMock(text="run-proj"))
        monkeypatch.setattr("requests.get", metadata)

        assert resolve_secret("gcp-secret://dps-conn") == "gcp-conn"
        assert metadata.call_args.kwargs["headers"] == {"Metadata-Flavor": "Google"}
        client.access_secret_version.assert_called_once_with(
            request={"name": "projects/run-proj/secrets/dps-conn/versions/latest"}
        )

    def test_gcp_metadata_unreachable(self, monkeypatch):
        import requests

        monkeypatch.delenv("GCP_PROJECT_ID", raising=False)
        monkeypatch.setattr("google.cloud.secretmanager.SecretManagerServiceClient", MagicMock())
        monkeypatch.setattr(
            "requests.get", MagicMock(side_effect=requests.ConnectionError("no route"))
        )
        with pytest.raises(RuntimeError, match="GCP_PROJECT_ID"):
            resolve_secret("gcp-secret://dps-conn")

    def test_resolve_connection_string_unset(self, monkeypatch):
        monkeypatch.delenv("SOME_UNSET_CONNECTION", raising=False)
        assert resolve_connection_string("SOME_UNSET_CONNECTION") == ""
