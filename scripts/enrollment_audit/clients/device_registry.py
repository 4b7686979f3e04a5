"""Device-registry client used to remove devices created by provisioning."""

from __future__ import annotations

from urllib.parse import quote

from scripts.enrollment_audit.auth import ConnectionString, SasTokenProvider
from scripts.enrollment_audit.clients.http import HTTPClient

API_VERSION = "2021-04-12"


class DeviceRegistryClient:
    def __init__(self, http: HTTPClient) -> None:
        self._http = http

    @classmethod
    def from_connection_string(
        cls, connection_string: str, timeout: float = 30.0
    ) -> "DeviceRegistryClient":
        conn = ConnectionString.parse(connection_string)
        http = HTTPClient(
            base_url=f"https://{conn.host_name}",
            api_version=API_VERSION,
            auth=SasTokenProvider.from_connection_string(conn),
            timeout=timeout,
        )
        return cls(http)

    async def remove_device(self, device_id: str) -> None:
        """Delete a device unconditionally. Raises ThrottlingError on 429."""
        await self._http.request(
            "DELETE",
            f"/devices/{quote(device_id, safe='')}",
            headers={"If-Match": "*"},
        )

    async def close(self) -> None:
        await self._http.close()

    async def __aenter__(self) -> "DeviceRegistryClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
