"""Connection strings and shared-access-signature tokens."""

from __future__ import annotations

import base64
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote_plus, urlencode

from scripts.enrollment_audit.keys import derive_key

DEFAULT_TOKEN_TTL_S = 3600


@dataclass(frozen=True)
class ConnectionString:
    host_name: str
    shared_access_key_name: str
    shared_access_key: str

    @classmethod
    def parse(cls, value: str) -> "ConnectionString":
        """Parse 'HostName=...;SharedAccessKeyName=...;SharedAccessKey=...'."""
        parts: dict[str, str] = {}
        for segment in value.split(";"):
            if not segment.strip():
                continue
            key, sep, val = segment.partition("=")
            if not sep:
                raise ValueError(f"Malformed connection string segment: {key!r}")
            parts[key.strip()] = val.strip()

        missing = [
            k for k in ("HostName", "SharedAccessKeyName", "SharedAccessKey")
            if not parts.get(k)
        ]
        if missing:
            raise ValueError(f"Connection string is missing {', '.join(missing)}")
        return cls(
            host_name=parts["HostName"],
            shared_access_key_name=parts["SharedAccessKeyName"],
            shared_access_key=parts["SharedAccessKey"],
        )


def generate_sas_token(
    resource_uri: str,
    key: str,
    policy_name: Optional[str] = None,
    ttl_s: int = DEFAULT_TOKEN_TTL_S,
    now: Optional[float] = None,
) -> str:
    """Build a SharedAccessSignature header value for resource_uri."""
    expiry = int((now if now is not None else time.time()) + ttl_s)
    signature = derive_key(
        base64.b64decode(key), f"{quote_plus(resource_uri)}\n{expiry}"
    )
    fields = {"sr": resource_uri, "sig": signature, "se": str(expiry)}
    if policy_name:
        fields["skn"] = policy_name
    return "SharedAccessSignature " + urlencode(fields)


class SasTokenProvider:
    """Caches a token and renews it shortly before it expires."""

    def __init__(
        self,
        resource_uri: str,
        key: str,
        policy_name: Optional[str] = None,
        ttl_s: int = DEFAULT_TOKEN_TTL_S,
    ) -> None:
        self._resource_uri = resource_uri
        self._key = key
        self._policy_name = policy_name
        self._ttl_s = ttl_s
        self._token: Optional[str] = None
        self._renew_at = 0.0

    @classmethod
    def from_connection_string(cls, conn: ConnectionString) -> "SasTokenProvider":
        return cls(conn.host_name, conn.shared_access_key, conn.shared_access_key_name)

    def __call__(self) -> str:
        now = time.time()
        if self._token is None or now >= self._renew_at:
            self._token = generate_sas_token(
                self._resource_uri, self._key, self._policy_name, self._ttl_s, now
            )
            self._renew_at = now + self._ttl_s * 0.8
        return self._token
