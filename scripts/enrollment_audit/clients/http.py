"""Async HTTP client shared by the registry clients."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import aiohttp

from scripts.enrollment_audit.errors import TransportError, error_from_response


@dataclass
class HttpResponse:
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None


class HTTPClient:
    """aiohttp wrapper that adds the api-version and SAS authorization.

    Response header names are lower-cased.

    Responses with status >= 400 are raised as RemoteHttpError subclasses;
    connection failures and timeouts as a transient TransportError.
    """

    def __init__(
        self,
        base_url: str,
        api_version: str,
        auth: Optional[Callable[[], str]] = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._auth = auth
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        """Get or create session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    def _headers(self, extra: Optional[Dict[str, str]]) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._auth is not None:
            headers["Authorization"] = self._auth()
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        query = {"api-version": self.api_version}
        if params:
            query.update(params)

        try:
            async with self.session.request(
                method,
                url,
                params=query,
                json=json_body,
                headers=self._headers(headers),
            ) as response:
                text = await response.text()
                resp_headers = {k.lower(): v for k, v in response.headers.items()}
                status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportError(
                f"{method} {url} failed: {exc}", is_transient=True
            ) from exc

        body: Any = None
        if text:
            try:
                body = json.loads(text)
            except ValueError:
                body = text

        if status >= 400:
            raise error_from_response(status, resp_headers, body)
        return HttpResponse(status=status, headers=resp_headers, body=body)

    async def close(self) -> None:
        """Close session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "HTTPClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
