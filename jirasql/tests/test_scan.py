"""Tests for the Paginated Scanner (offset paging, row limits, failures)."""
import logging
import math
from typing import List, Optional, Tuple

import pytest

from jirasql.client.errors import TransportError
from jirasql.plugin.models import Page, ScanCursor
from jirasql.plugin.scan import RowBudget, effective_page_size, paginate


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class _FakeEndpoint:
    """Offset-paginated endpoint over range(n) that records every request."""

    def __init__(
        self,
        n: int,
        report_total: bool = False,
        server_cap: Optional[int] = None,
        fail_at_offset: Optional[int] = None,
        start_at_shift: int = 0,
    ) -> None:
        self.n = n
        self.report_total = report_total
        self.server_cap = server_cap
        self.fail_at_offset = fail_at_offset
        self.start_at_shift = start_at_shift
        self.calls: List[Tuple[int, int]] = []

    async def fetch(self, offset: int, max_results: int) -> Page[int]:
        self.calls.append((offset, max_results))
        if self.fail_at_offset is not None and offset == self.fail_at_offset:
            raise TransportError("GET page: HTTP 500", status=500, body="upstream exploded")
        size = min(max_results, self.server_cap) if self.server_cap else max_results
        return Page(
            items=list(range(offset, min(offset + size, self.n))),
            start_at=offset + self.start_at_shift,
            total=self.n if self.report_total else None,
            max_results=size if self.server_cap else None,
        )


async def _collect(gen) -> list:
    return [item async for item in gen]


# ---------------------------------------------------------------------------
# Termination
# ---------------------------------------------------------------------------

class TestTermination:
    @pytest.mark.asyncio
    async def test_2500_items_three_pages(self):
        ep = _FakeEndpoint(2500)
        items = await _collect(paginate(ep.fetch, page_size=1000))
        assert len(items) == 2500
        assert ep.calls == [(0, 1000), (1000, 1000), (2000, 1000)]

    @pytest.mark.asyncio
    async def test_items_emitted_in_order_without_gaps(self):
        ep = _FakeEndpoint(250)
        items = await _collect(paginate(ep.fetch, page_size=100))
        assert items == list(range(250))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("n,page_size", [(1, 100), (99, 100), (100, 100), (250, 100), (1000, 7)])
    async def test_ceil_n_over_p_requests_with_total(self, n, page_size):
        ep = _FakeEndpoint(n, report_total=True)
        items = await _collect(paginate(ep.fetch, page_size=page_size))
        assert len(items) == n
        assert len(ep.calls) == math.ceil(n / page_size)

    @pytest.mark.asyncio
    async def test_exact_multiple_without_total_needs_empty_page(self):
        """Without a total, only a short page proves the end of data."""
        ep = _FakeEndpoint(200)
        items = await _collect(paginate(ep.fetch, page_size=100))
        assert len(items) == 200
        assert ep.calls == [(0, 100), (100, 100), (200, 100)]

    @pytest.mark.asyncio
    async def test_empty_source_single_request(self):
        ep = _FakeEndpoint(0)
        assert await _collect(paginate(ep.fetch, page_size=100)) == []
        assert ep.calls == [(0, 100)]

    @pytest.mark.asyncio
    async def test_server_capped_page_is_not_end_of_data(self):
        ep = _FakeEndpoint(120, report_total=True, server_cap=50)
        items = await _collect(paginate(ep.fetch, page_size=1000))
        assert len(items) == 120
        assert [offset for offset, _ in ep.calls] == [0, 50, 100]

    @pytest.mark.asyncio
    async def test_offsets_advance_by_items_returned(self):
        ep = _FakeEndpoint(120, server_cap=50, report_total=True)
        await _collect(paginate(ep.fetch, page_size=1000))
        offsets = [offset for offset, _ in ep.calls]
        assert offsets == [0, 50, 100]


# ---------------------------------------------------------------------------
# Row limits
# ---------------------------------------------------------------------------

class TestRowLimit:
    @pytest.mark.asyncio
    async def test_limit_10_single_small_page(self):
        ep = _FakeEndpoint(2500)
        items = await _collect(paginate(ep.fetch, limit=10, page_size=1000))
        assert items == list(range(10))
        assert ep.calls == [(0, 10)]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [1, 99, 100, 101, 200, 249, 250])
    async def test_exactly_limit_items_and_no_extra_page(self, limit):
        page_size = 100
        ep = _FakeEndpoint(250)
        items = await _collect(paginate(ep.fetch, limit=limit, page_size=page_size))
        assert len(items) == limit
        # No request beyond the page holding the limit-th item.
        last_offset = ep.calls[-1][0]
        assert last_offset <= limit - 1 < last_offset + ep.calls[-1][1]
        assert len(ep.calls) == math.ceil(limit / effective_page_size(page_size, limit))

    @pytest.mark.asyncio
    async def test_limit_above_available_returns_everything(self):
        ep = _FakeEndpoint(30)
        items = await _collect(paginate(ep.fetch, limit=500, page_size=100))
        assert len(items) == 30
        assert len(ep.calls) == 1

    @pytest.mark.asyncio
    async def test_zero_limit_issues_no_request(self):
        ep = _FakeEndpoint(30)
        assert await _collect(paginate(ep.fetch, limit=0)) == []
        assert ep.calls == []

    @pytest.mark.asyncio
    async def test_consumer_stopping_early_stops_paging(self):
        ep = _FakeEndpoint(1000)
        gen = paginate(ep.fetch, page_size=100)
        seen = []
        async for item in gen:
            seen.append(item)
            if len(seen) == 150:
                break
        await gen.aclose()
        assert len(ep.calls) == 2


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_page_keeps_emitted_items_and_raises_once(self, caplog):
        ep = _FakeEndpoint(250, fail_at_offset=100)
        received = []
        errors = []
        with caplog.at_level(logging.WARNING, logger="jirasql.plugin.scan"):
            try:
                async for item in paginate(ep.fetch, page_size=100, name="test.scan"):
                    received.append(item)
            except TransportError as exc:
                errors.append(exc)

        assert received == list(range(100))
        assert len(errors) == 1
        assert errors[0].status == 500
        warnings = [r for r in caplog.records if r.name == "jirasql.plugin.scan"]
        assert len(warnings) == 1
        assert "offset=100" in warnings[0].getMessage()

    @pytest.mark.asyncio
    async def test_no_retry_on_failure(self):
        ep = _FakeEndpoint(250, fail_at_offset=0)
        with pytest.raises(TransportError):
            await _collect(paginate(ep.fetch, page_size=100))
        assert ep.calls == [(0, 100)]


# ---------------------------------------------------------------------------
# Building blocks
# ---------------------------------------------------------------------------

class TestRowBudget:
    def test_unlimited_never_exhausts(self):
        budget = RowBudget(None)
        budget.consume(10_000)
        assert budget.remaining is None
        assert not budget.exhausted()

    def test_counts_down_to_zero(self):
        budget = RowBudget(2)
        budget.consume()
        assert budget.remaining == 1
        budget.consume()
        assert budget.exhausted()
        budget.consume()
        assert budget.remaining == 0


class TestPageSize:
    def test_default_when_no_limit(self):
        assert effective_page_size(1000, None) == 1000

    def test_reduced_to_smaller_limit(self):
        assert effective_page_size(1000, 10) == 10

    def test_not_raised_by_larger_limit(self):
        assert effective_page_size(1000, 5000) == 1000


class TestScanCursor:
    def test_advance(self):
        cursor = ScanCursor(page_size=100)
        cursor.advance(100)
        cursor.advance(37)
        assert cursor.offset == 137


class TestServerOffset:
    @pytest.mark.asyncio
    async def test_mismatched_start_at_is_logged(self, caplog):
        ep = _FakeEndpoint(25, start_at_shift=5)
        with caplog.at_level(logging.WARNING, logger="jirasql.plugin.scan"):
            items = await _collect(paginate(ep.fetch, page_size=10, name="test.scan"))
        assert len(items) == 25
        messages = [r.getMessage() for r in caplog.records if r.name == "jirasql.plugin.scan"]
        assert len(messages) == 3
        assert "startAt=5" in messages[0]

    @pytest.mark.asyncio
    async def test_matching_start_at_is_quiet(self, caplog):
        ep = _FakeEndpoint(25)
        with caplog.at_level(logging.WARNING, logger="jirasql.plugin.scan"):
            await _collect(paginate(ep.fetch, page_size=10))
        assert not [r for r in caplog.records if r.name == "jirasql.plugin.scan"]
