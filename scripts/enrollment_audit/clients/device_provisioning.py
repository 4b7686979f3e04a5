"""Device-side registration against the provisioning endpoint.

A device registers with PUT /{scope}/registrations/{id}/register, which
starts an asynchronous operation; the client then polls the operation
until it leaves the "assigning" state. Every failure is reported as a
TransportError whose is_transient flag says whether a retry may help.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote

from scripts.enrollment_audit.auth import generate_sas_token
from scripts.enrollment_audit.clients.http import HTTPClient, HttpResponse
from scripts.enrollment_audit.errors import (
    RegistryError,
    TransportError,
    parse_retry_after,
)
from scripts.enrollment_audit.models import RegistrationResult

logger = logging.getLogger("enrollment_audit.device_provisioning")

API_VERSION = "2021-06-01"
DEFAULT_POLL_INTERVAL_S = 2.0
MAX_POLLS = 30


class DeviceProvisioningClient:
    """Registers devices using symmetric-key attestation.

    One HTTPClient per endpoint is cached; the Authorization header is set
    per request because each device signs with its own derived key.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        poll_interval: float = DEFAULT_POLL_INTERVAL_S,
        max_polls: int = MAX_POLLS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._timeout = timeout
        self._poll_interval = poll_interval
        self._max_polls = max_polls
        self._sleep = sleep
        self._clients: dict[str, HTTPClient] = {}

    def _client(self, endpoint: str) -> HTTPClient:
        if endpoint not in self._clients:
            self._clients[endpoint] = HTTPClient(
                base_url=f"https://{endpoint}",
                api_version=API_VERSION,
                timeout=self._timeout,
            )
        return self._clients[endpoint]

    async def register_device(
        self,
        endpoint: str,
        scope_id: str,
        registration_id: str,
        device_key: str,
    ) -> RegistrationResult:
        resource = f"{scope_id}/registrations/{registration_id}"
        headers = {
            "Authorization": generate_sas_token(resource, device_key, "registration"),
            "Content-Type": "application/json",
        }
        base = f"/{quote(scope_id, safe='')}/registrations/{quote(registration_id, safe='')}"
        http = self._client(endpoint)

        resp = await self._send(
            http, "PUT", f"{base}/register",
            json_body={"registrationId": registration_id}, headers=headers,
        )
        operation = resp.body or {}
        polls = 0
        while operation.get("status") == "assigning":
            if polls >= self._max_polls:
                raise TransportError(
                    f"Registration of {registration_id} still assigning after {polls} polls",
                    is_transient=True,
                )
            delay = parse_retry_after(resp.headers)
            await self._sleep(delay if delay is not None else self._poll_interval)
            resp = await self._send(
                http, "GET", f"{base}/operations/{quote(operation['operationId'], safe='')}",
                headers=headers,
            )
            operation = resp.body or {}
            polls += 1

        result = RegistrationResult.from_operation(registration_id, operation)
        logger.debug(
            "Registration %s finished with status %s", registration_id, result.status,
            extra={"registration_id": registration_id},
        )
        return result

    async def _send(self, http: HTTPClient, method: str, path: str, **kwargs) -> HttpResponse:
        try:
            return await http.request(method, path, **kwargs)
        except TransportError:
            raise
        except RegistryError as exc:
            raise TransportError(
                str(exc),
                status_code=exc.status_code,
                is_transient=exc.is_transient,
                retry_after=exc.retry_after,
            ) from exc

    async def close(self) -> None:
        for http in self._clients.values():
            await http.close()
        self._clients.clear()

    async def __aenter__(self) -> "DeviceProvisioningClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
