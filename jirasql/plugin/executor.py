from __future__ import annotations
import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Set

from jirasql.client.errors import JiraError, NotFoundError
from jirasql.plugin.hydrate import DEFAULT_MAX_CONCURRENCY, HydrateGate
from jirasql.plugin.models import HydrateFunc, QueryContext, Table, TransformData
from jirasql.plugin.transform import apply

logger = logging.getLogger(__name__)


@dataclass
class RowError:
    """A row dropped because one of its hydrate calls failed."""

    table: str
    item: str
    error: str


def build_row(table: Table, item: Any, hydrate_data: Dict[HydrateFunc, Any]) -> Dict[str, Any]:
    """Run every column transform against the item and its hydrate outputs."""
    return {
        col.name: apply(
            col.transform,
            TransformData(
                item=item,
                hydrate_item=hydrate_data.get(col.hydrate) if col.hydrate else None,
                column_name=col.name,
            ),
        )
        for col in table.columns
    }


class TableExecutor:
    """
    Turns a Table definition + QueryContext into a stream of flat rows.

    Flow per scan:
      key quals cover get_config.key_columns → single-item get (404 → no row)
      otherwise                              → list func (Paginated Scan)
      each item → hydrate funcs through one HydrateGate per func → row

    Rows come out in hydrate-completion order, not listing order. A hydrate
    failure drops that row only (recorded in self.errors). A list/get failure
    aborts the scan: rows for items listed before it are still emitted, then
    the error is raised. Reaching the row limit stops listing but lets
    hydrate calls already issued finish and emit. Listing waits whenever as
    many rows are hydrating as the largest gate admits, so the set of
    pending tasks stays bounded on large scans.
    """

    def __init__(self, client: Any, default_max_concurrency: Optional[int] = None) -> None:
        self._client = client
        config = getattr(client, "config", None)
        self._default_max_concurrency = (
            default_max_concurrency
            or getattr(config, "hydrate_max_concurrency", None)
            or DEFAULT_MAX_CONCURRENCY
        )
        self.errors: List[RowError] = []

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def execute(self, table: Table, ctx: QueryContext) -> AsyncIterator[Dict[str, Any]]:
        gates = {
            func: HydrateGate(
                table.hydrate_config(func).max_concurrency or self._default_max_concurrency,
                name=f"{table.name}.{func.__name__}",
            )
            for func in table.hydrate_funcs()
        }

        # Listing pauses while this many rows are hydrating.
        max_pending = max((g.max_concurrency for g in gates.values()), default=1)

        emitted = 0
        list_error: Optional[JiraError] = None
        pending: Set[asyncio.Task] = set()
        try:
            try:
                async for item in self._items(table, ctx):
                    if not gates:
                        emitted += 1
                        yield build_row(table, item, {})
                        continue

                    pending.add(asyncio.create_task(
                        self._hydrate_row(table, item, gates), name=_item_label(item)
                    ))
                    if len(pending) >= max_pending:
                        done, pending = await asyncio.wait(
                            pending, return_when=asyncio.FIRST_COMPLETED
                        )
                    else:
                        done = {t for t in pending if t.done()}
                        pending -= done
                    for task in done:
                        row = self._collect(table, task)
                        if row is not None:
                            emitted += 1
                            yield row
            except JiraError as exc:
                # Rows already listed still finish hydrating and go out first.
                list_error = exc

            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    row = self._collect(table, task)
                    if row is not None:
                        emitted += 1
                        yield row
        finally:
            for task in pending:
                task.cancel()

        logger.info(
            "%s: emitted %d row(s), %d row error(s)", table.name, emitted, len(self.errors)
        )
        if list_error is not None:
            raise list_error

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _wants_get(self, table: Table, ctx: QueryContext) -> bool:
        return table.get_config is not None and all(
            key in ctx.key_quals for key in table.get_config.key_columns
        )

    async def _items(self, table: Table, ctx: QueryContext) -> AsyncIterator[Any]:
        if self._wants_get(table, ctx):
            if ctx.limit is not None and ctx.limit <= 0:
                return
            try:
                item = await table.get_config.hydrate(self._client, ctx.key_quals)
            except NotFoundError:
                item = None
            except JiraError as exc:
                logger.error("%s.get failed for %s: %s", table.name, ctx.key_quals, exc)
                raise
            if item is not None:
                yield item
            return

        try:
            async for item in table.list_config.hydrate(self._client, ctx):
                yield item
        except JiraError as exc:
            logger.error("%s.list failed: %s", table.name, exc)
            raise

    async def _hydrate_row(
        self,
        table: Table,
        item: Any,
        gates: Dict[HydrateFunc, HydrateGate],
    ) -> Dict[str, Any]:
        funcs = list(gates)
        outputs = await asyncio.gather(
            *[gates[func].enrich(item, functools.partial(func, self._client)) for func in funcs],
            return_exceptions=True,
        )
        for out in outputs:
            if isinstance(out, BaseException):
                raise out
        return build_row(table, item, dict(zip(funcs, outputs)))

    def _collect(self, table: Table, task: asyncio.Task) -> Optional[Dict[str, Any]]:
        try:
            return task.result()
        except JiraError as exc:
            logger.error("%s: dropping row %s: %s", table.name, task.get_name(), exc)
            self.errors.append(RowError(table=table.name, item=task.get_name(), error=str(exc)))
            return None


def _item_label(item: Any) -> str:
    for attr in ("id", "account_id", "key", "name"):
        value = getattr(item, attr, None)
        if value:
            return f"{attr}={value}"
    return repr(item)[:80]
