"""Exception hierarchy for remote registry failures."""

from __future__ import annotations

from typing import Any, Mapping, Optional

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class RegistryError(Exception):
    """Base exception for all remote registry failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        is_transient: bool = False,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.is_transient = is_transient
        self.retry_after = retry_after


class RemoteHttpError(RegistryError):
    """HTTP error returned by a registry endpoint."""


class NotFoundError(RemoteHttpError):
    """Entity does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404, is_transient=False)


class ThrottlingError(RemoteHttpError):
    """Too many requests. retry_after is None when the server gave no hint."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(
            message, status_code=429, is_transient=True, retry_after=retry_after
        )


class RemoteQueryError(RemoteHttpError):
    """Non-transient failure while fetching a query page."""


class TransportError(RegistryError):
    """Request failed below HTTP, or a device registration did not complete."""


def parse_retry_after(headers: Mapping[str, str]) -> Optional[float]:
    """Return the Retry-After header in seconds, or None if absent or not numeric."""
    raw = headers.get("retry-after", headers.get("Retry-After"))
    if raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    return value if value >= 0 else None


def _error_message(status: int, body: Any) -> str:
    if isinstance(body, dict):
        for key in ("message", "Message", "errorCode", "ErrorCode"):
            if body.get(key):
                return f"HTTP {status}: {body[key]}"
    if isinstance(body, str) and body:
        return f"HTTP {status}: {body[:200]}"
    return f"HTTP {status}"


def error_from_response(
    status: int, headers: Mapping[str, str], body: Any
) -> RemoteHttpError:
    """Map a failed HTTP response to the error taxonomy."""
    message = _error_message(status, body)
    if status == 404:
        return NotFoundError(message)
    if status == 429:
        return ThrottlingError(message, retry_after=parse_retry_after(headers))
    return RemoteHttpError(
        message,
        status_code=status,
        is_transient=status in TRANSIENT_STATUS_CODES,
        retry_after=parse_retry_after(headers),
    )
