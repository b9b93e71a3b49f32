from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 50


class HydrateState(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    ENRICHED = "enriched"
    FAILED = "failed"


@dataclass
class HydrateTask:
    """One secondary fetch for one row. Terminal on first outcome."""

    item: Any
    fetch_fn: Callable[[Any], Awaitable[Any]]
    state: HydrateState = HydrateState.PENDING
    result: Any = None
    error: Optional[BaseException] = None


class HydrateGate:
    """
    Bounded Enrichment Gate.

    Every secondary per-row fetch goes through a fixed-size slot pool so a
    large scan never has more than max_concurrency calls outstanding against
    the remote API. The bound is purely for the remote rate limiter: no
    caching, no coalescing of identical lookups, no retries.

    in_flight / peak_in_flight are exposed for instrumentation.
    """

    def __init__(self, max_concurrency: int = DEFAULT_MAX_CONCURRENCY, name: str = "hydrate") -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        self.max_concurrency = max_concurrency
        self.name = name
        self._slots = asyncio.Semaphore(max_concurrency)
        self.in_flight = 0
        self.peak_in_flight = 0

    async def run(self, task: HydrateTask) -> Any:
        """Execute task under a slot. The slot is released whatever the outcome."""
        async with self._slots:
            task.state = HydrateState.FETCHING
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                task.result = await task.fetch_fn(task.item)
            except Exception as exc:
                task.state = HydrateState.FAILED
                task.error = exc
                logger.debug("%s: hydrate failed (in_flight=%d): %s", self.name, self.in_flight, exc)
                raise
            finally:
                self.in_flight -= 1

        task.state = HydrateState.ENRICHED
        return task.result

    async def enrich(self, item: Any, fetch_fn: Callable[[Any], Awaitable[Any]]) -> Any:
        return await self.run(HydrateTask(item=item, fetch_fn=fetch_fn))
