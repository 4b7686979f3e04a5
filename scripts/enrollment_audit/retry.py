"""Single-retry policy for transient remote failures."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from scripts.enrollment_audit.errors import RegistryError

logger = logging.getLogger("enrollment_audit.retry")

T = TypeVar("T")


class TransientRetryPolicy:
    """Retry a remote call at most once after a transient failure.

    The wait is the server's Retry-After hint when present, otherwise
    fallback_delay. With neither, a transient failure propagates at once,
    as does every non-transient failure. The second failure always
    propagates unmodified.
    """

    def __init__(
        self,
        fallback_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.fallback_delay = fallback_delay
        self._sleep = sleep

    @staticmethod
    def is_transient(exc: BaseException) -> bool:
        return isinstance(exc, RegistryError) and exc.is_transient

    def retry_delay(self, exc: BaseException) -> Optional[float]:
        """Seconds to wait before retrying exc, or None if it must not be retried."""
        if not self.is_transient(exc):
            return None
        if exc.retry_after is not None:
            return exc.retry_after
        return self.fallback_delay

    async def call(
        self,
        operation: Callable[..., Awaitable[T]],
        *args: Any,
        description: str = "remote call",
        **kwargs: Any,
    ) -> T:
        try:
            return await operation(*args, **kwargs)
        except RegistryError as exc:
            delay = self.retry_delay(exc)
            if delay is None:
                raise
            logger.warning(
                "Transient error during %s: %s. Retrying in %.1fs",
                description, exc, delay,
                extra={"status_code": exc.status_code, "retry_after_s": delay},
            )
        await self._sleep(delay)
        return await operation(*args, **kwargs)
