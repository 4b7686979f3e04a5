"""Connection strings stored in a cloud secret manager.

DPS_CONNECTION_STRING and IOTHUB_CONNECTION_STRING may hold a secret
reference instead of the connection string itself:

  aws-secret://NAME          whole SecretString of NAME
  aws-secret://NAME#FIELD    one field of a JSON SecretString
  gcp-secret://NAME          latest version of NAME in the current project
  gcp-secret://projects/P/secrets/NAME/versions/V

Any other value is used verbatim, which is the normal case for local runs.
"""

from __future__ import annotations

import json
import logging
import os

logger = logging.getLogger("enrollment_audit.secrets")

_AWS_PREFIX = "aws-secret://"
_GCP_PREFIX = "gcp-secret://"

_GCP_METADATA_PROJECT_URL = "http://metadata.google.internal/computeMetadata/v1/project/project-id"


def resolve_secret(value: str) -> str:
    """Return the plaintext behind a secret reference, or value unchanged."""
    if value.startswith(_AWS_PREFIX):
        return _resolve_aws_secret(value[len(_AWS_PREFIX):])
    if value.startswith(_GCP_PREFIX):
        return _resolve_gcp_secret(value[len(_GCP_PREFIX):])
    return value


def _resolve_aws_secret(ref: str) -> str:
    import boto3

    secret_id, _, field_name = ref.partition("#")
    client = boto3.client("secretsmanager", region_name=os.environ.get("AWS_REGION", "us-east-1"))

    logger.info("Reading connection string from AWS secret %s", secret_id)
    secret = client.get_secret_value(SecretId=secret_id)["SecretString"]
    if not field_name:
        return secret
    fields = json.loads(secret)
    if field_name not in fields:
        raise ValueError(f"AWS secret {secret_id} has no field {field_name!r}")
    return str(fields[field_name])


def _gcp_version_name(ref: str) -> str:
    if ref.startswith("projects/"):
        return ref
    project = os.environ.get("GCP_PROJECT_ID", "") or _gcp_project_from_metadata()
    return f"projects/{project}/secrets/{ref}/versions/latest"


def _resolve_gcp_secret(ref: str) -> str:
    """Read a Secret Manager version. A bare name means the latest version in
    GCP_PROJECT_ID, or in the project the Cloud Run job runs in."""
    from google.cloud import secretmanager

    name = _gcp_version_name(ref)
    logger.info("Reading connection string from GCP secret %s", name)
    client = secretmanager.SecretManagerServiceClient()
    response = client.access_secret_version(request={"name": name})
    return response.payload.data.decode("UTF-8")


def _gcp_project_from_metadata() -> str:
    import requests

    try:
        resp = requests.get(
            _GCP_METADATA_PROJECT_URL, headers={"Metadata-Flavor": "Google"}, timeout=2
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise RuntimeError(
            "GCP_PROJECT_ID is unset and the metadata server is unreachable"
        ) from exc
    return resp.text


def resolve_connection_string(env_name: str) -> str:
    """Read a connection string from env_name, resolving secret references.

    Returns an empty string when the variable is unset.
    """
    raw = os.environ.get(env_name, "").strip()
    if not raw:
        return ""
    return resolve_secret(raw).strip()
