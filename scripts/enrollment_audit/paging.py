"""Forward-only cursor over a paged remote query."""

from __future__ import annotations

from typing import AsyncIterator, Awaitable, Callable, Generic, Optional, TypeVar

from scripts.enrollment_audit.errors import RemoteHttpError, RemoteQueryError
from scripts.enrollment_audit.models import Page
from scripts.enrollment_audit.retry import TransientRetryPolicy

T = TypeVar("T")

PageFetcher = Callable[[Optional[str], Optional[int]], Awaitable[Page[T]]]


class QueryCursor(Generic[T]):
    """Pages through a remote query using an opaque continuation token.

    A failed next() leaves the cursor where it was, so the caller may call
    it again after a transient error. Non-transient HTTP failures are
    raised as RemoteQueryError.
    """

    def __init__(self, fetch_page: PageFetcher[T], page_size: Optional[int] = None) -> None:
        if page_size is not None and page_size < 1:
            raise ValueError("page_size must be positive")
        self._fetch_page = fetch_page
        self.page_size = page_size
        self._continuation: Optional[str] = None
        self._exhausted = False
        self.pages_read = 0

    def has_next(self) -> bool:
        return not self._exhausted

    async def next(self) -> Page[T]:
        if self._exhausted:
            raise RemoteQueryError("Query cursor is exhausted", status_code=None)
        try:
            page = await self._fetch_page(self._continuation, self.page_size)
        except RemoteQueryError:
            raise
        except RemoteHttpError as exc:
            if exc.is_transient:
                raise
            raise RemoteQueryError(
                f"Query page failed: {exc}", status_code=exc.status_code
            ) from exc

        self._continuation = page.continuation_token
        self._exhausted = not page.continuation_token
        self.pages_read += 1
        return page


async def iter_pages(
    cursor: QueryCursor[T],
    retry_policy: Optional[TransientRetryPolicy] = None,
    description: str = "query page",
) -> AsyncIterator[Page[T]]:
    """Yield pages strictly in order, retrying each fetch per retry_policy."""
    while cursor.has_next():
        if retry_policy is None:
            page = await cursor.next()
        else:
            page = await retry_policy.call(cursor.next, description=description)
        yield page
