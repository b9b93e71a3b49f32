from __future__ import annotations
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, TypeVar

from jirasql.client.errors import JiraError
from jirasql.plugin.models import Page, ScanCursor

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 1000

FetchPage = Callable[[int, int], Awaitable[Page[T]]]


class RowBudget:
    """
    Rows the consumer still wants. None means unlimited.

    The only cancellation signal a scan honours: once it reaches zero no
    further page is requested.
    """

    def __init__(self, limit: Optional[int] = None) -> None:
        self._remaining = limit

    @property
    def remaining(self) -> Optional[int]:
        return self._remaining

    def consume(self, n: int = 1) -> None:
        if self._remaining is not None:
            self._remaining = max(0, self._remaining - n)

    def exhausted(self) -> bool:
        return self._remaining is not None and self._remaining <= 0


def effective_page_size(page_size: int, limit: Optional[int]) -> int:
    """Never ask for more rows than the consumer can take."""
    if limit is not None and 0 < limit < page_size:
        return limit
    return page_size


async def paginate(
    fetch_page: FetchPage[T],
    limit: Optional[int] = None,
    page_size: int = DEFAULT_PAGE_SIZE,
    name: str = "scan",
) -> AsyncIterator[T]:
    """
    Offset-based Paginated Scan.

    Requests one page at a time starting at offset 0 and yields every item of
    a page before requesting the next. Stops when:
      - the row budget (limit) hits zero, checked after every item;
      - a page comes back shorter than requested, or shorter than the page
        size the server says it applied (end of data);
      - the endpoint reports a total and offset has reached it.

    A failed page is logged once and re-raised. Items already yielded stay
    with the caller; nothing is retried.
    """
    budget = RowBudget(limit)
    if budget.exhausted():
        return

    cursor = ScanCursor(page_size=effective_page_size(page_size, limit))

    while True:
        try:
            page = await fetch_page(cursor.offset, cursor.page_size)
        except JiraError as exc:
            logger.warning(
                "%s: page request failed (offset=%d, max_results=%d): %s",
                name, cursor.offset, cursor.page_size, exc,
            )
            raise

        if page.start_at != cursor.offset:
            logger.warning(
                "%s: asked for offset=%d, server answered startAt=%d",
                name, cursor.offset, page.start_at,
            )

        for item in page.items:
            yield item
            cursor.total_consumed += 1
            budget.consume()
            if budget.exhausted():
                logger.debug("%s: row limit reached after %d row(s)", name, cursor.total_consumed)
                return

        returned = len(page.items)
        cursor.advance(returned)

        # Servers may cap maxResults below what was asked (agile API: 50).
        expected = min(cursor.page_size, page.max_results or cursor.page_size)
        if returned == 0 or returned < expected:
            return
        if page.total is not None and cursor.offset >= page.total:
            return
