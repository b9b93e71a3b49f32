from __future__ import annotations
import asyncio
import json
import logging
import time
from typing import Any, Dict, List, Optional

import duckdb
import pandas as pd
from opentelemetry import trace

from jirasql.client.errors import DecodeError, JiraConnectionError, JiraError, TransportError
from jirasql.client.jira_client import JiraClient
from jirasql.planner.models import FetchNode
from jirasql.planner.query_planner import QueryPlanner
from jirasql.plugin.executor import RowError, TableExecutor
from jirasql.plugin.models import ColumnType, QueryContext, Table
from jirasql.tables.plugin import plugin_tables

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("jirasql.engine")


class QueryEngine:
    """
    Runs SQL over the Jira tables of one connection.

    Flow per request:
      plan (sqlglot) → concurrent table scans (limit / key quals applied) →
      register DuckDB views → execute SQL → rows + metadata

    Per-request DuckDB connection; scans share the connection's JiraClient.
    """

    def __init__(self, client: JiraClient, tables: Optional[Dict[str, Table]] = None) -> None:
        self._client = client
        self._tables = tables if tables is not None else plugin_tables()

    @property
    def tables(self) -> Dict[str, Table]:
        return self._tables

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def execute_query(self, sql: str) -> Dict[str, Any]:
        """
        Returns {rows, columns, row_errors, scans, timing} or
        {error, status_code}: 400 bad SQL / unknown table, 502 transport or
        decode failure, 503 connection failure.
        """
        with tracer.start_as_current_span(
            "engine.execute_query",
            attributes={"sql": sql, "jira.connection": self._client.config.connection_id},
        ) as root_span:
            # 1. Plan
            plan_start = time.time()
            with tracer.start_as_current_span("engine.plan"):
                try:
                    plan = QueryPlanner(self._tables).plan(sql)
                except ValueError as exc:
                    return {"error": str(exc), "status_code": 400}
            planning_ms = int((time.time() - plan_start) * 1000)

            # 2. Scan every referenced table concurrently
            fetch_start = time.time()
            try:
                results = await asyncio.gather(*[self._scan(node) for node in plan.nodes])
            except JiraConnectionError as exc:
                return {"error": f"CONNECTION_ERROR: {exc}", "status_code": 503}
            except (TransportError, DecodeError) as exc:
                return {"error": f"SOURCE_ERROR: {exc}", "status_code": 502}
            except JiraError as exc:
                return {"error": str(exc), "status_code": 500}
            fetch_ms = int((time.time() - fetch_start) * 1000)

            datasets: Dict[str, List[Dict[str, Any]]] = {}
            row_errors: List[RowError] = []
            scans: Dict[str, Dict[str, Any]] = {}
            for node, (rows, errors, scan_ms) in zip(plan.nodes, results):
                datasets[node.view_name] = rows
                row_errors.extend(errors)
                scans[node.table_name] = {
                    "rows": len(rows),
                    "fetch_ms": scan_ms,
                    "limit": node.limit,
                    "key_quals": node.key_quals,
                }

            # 3. DuckDB
            duckdb_start = time.time()
            con = duckdb.connect(database=":memory:")
            try:
                with tracer.start_as_current_span("engine.duckdb"):
                    self._register_views(con, datasets)
                    try:
                        result_df = con.execute(plan.rewritten_sql).df()
                    except duckdb.Error as exc:
                        return {"error": f"SQL execution error: {exc}", "status_code": 400}
            finally:
                con.close()
            duckdb_ms = int((time.time() - duckdb_start) * 1000)

            total_ms = planning_ms + fetch_ms + duckdb_ms
            root_span.set_attribute("engine.total_ms", total_ms)
            root_span.set_attribute("engine.rows_returned", len(result_df))
            root_span.set_attribute("engine.row_errors", len(row_errors))

            # NaN is not valid JSON; nullable columns go back out as None.
            result_df = result_df.astype(object).where(pd.notna(result_df), None)

            return {
                "rows": result_df.to_dict(orient="records"),
                "columns": result_df.columns.tolist(),
                "row_errors": [e.__dict__ for e in row_errors],
                "scans": scans,
                "timing": {
                    "total_ms": total_ms,
                    "planning_ms": planning_ms,
                    "fetch_ms": fetch_ms,
                    "duckdb_ms": duckdb_ms,
                },
            }

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    async def _scan(self, node: FetchNode) -> tuple[List[Dict[str, Any]], List[RowError], int]:
        table = self._tables[node.table_name]
        ctx = QueryContext(
            limit=node.limit,
            columns=table.column_names(),
            key_quals=node.key_quals,
        )
        executor = TableExecutor(self._client)

        start = time.time()
        with tracer.start_as_current_span(
            f"engine.scan.{node.table_name}",
            attributes={
                "jira.table": node.table_name,
                "jira.limit": node.limit if node.limit is not None else -1,
                "jira.key_quals": str(node.key_quals),
            },
        ) as span:
            rows = [row async for row in executor.execute(table, ctx)]
            span.set_attribute("jira.rows", len(rows))
        return rows, executor.errors, int((time.time() - start) * 1000)

    # ------------------------------------------------------------------
    # DuckDB view registration
    # ------------------------------------------------------------------

    def _register_views(
        self,
        con: duckdb.DuckDBPyConnection,
        datasets: Dict[str, List[Dict[str, Any]]],
    ) -> None:
        """
        Register each dataset as a DuckDB view.

        JSON columns are registered as JSON text (DuckDB json_extract works on
        them). Empty scans still get a frame with the table's columns so the
        SQL binds instead of failing with "column not found".
        """
        for view_name, rows in datasets.items():
            table = self._tables[view_name]
            df = pd.DataFrame(rows, columns=table.column_names())
            for col in table.columns:
                if col.type == ColumnType.JSON:
                    df[col.name] = df[col.name].map(
                        lambda v: None if v is None else json.dumps(v)
                    )
            con.register(view_name, df)
            logger.debug("Registered view: %s (%d rows)", view_name, len(rows))
