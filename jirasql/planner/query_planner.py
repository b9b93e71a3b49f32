from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional, Tuple

import sqlglot
import sqlglot.expressions as exp

from jirasql.planner.models import FetchNode, QueryPlan
from jirasql.plugin.models import ColumnType, Table
from jirasql.tables.plugin import PLUGIN_NAME

logger = logging.getLogger(__name__)

# Tables may be referenced bare (jira_user) or schema-qualified (jira.jira_user).
SCHEMA = PLUGIN_NAME


class QueryPlanner:
    """
    Translates a SQL string into a QueryPlan using sqlglot AST parsing.

    Per referenced table it decides two things the scan can use:
    - limit:     pushed only for a single-table SELECT with no nested SELECT,
                 CTE, WHERE, JOIN, GROUP BY, ORDER BY, DISTINCT or aggregate
                 (LIMIT + OFFSET).
    - key_quals: equality on every key column of the table's get config
                 (e.g. jira_board.id = 42) in the outer WHERE, free of OR / NOT,
                 for a table the outer SELECT reads exactly once.
    Every scope that reads a table shares one view, so nothing that would
    narrow the scan for one scope is pushed when another could see it.
    Everything else is left to DuckDB over the full scan.
    """

    def __init__(self, tables: Dict[str, Table]) -> None:
        self._tables = tables

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def plan(self, sql: str) -> QueryPlan:
        """
        Parse SQL and produce a QueryPlan.

        Raises:
            ValueError: on a parse error or a table this plugin does not serve.
        """
        try:
            ast = sqlglot.parse_one(sql, read="duckdb")
        except Exception as exc:
            raise ValueError(f"SQL parse error: {exc}") from exc

        refs, unknown = self._extract_table_refs(ast)
        if unknown:
            raise ValueError(
                f"Unknown table: '{unknown[0]}'. "
                f"Available: {', '.join(sorted(self._tables))}"
            )
        if not refs:
            raise ValueError(
                "No recognized tables in query. "
                f"Available: {', '.join(sorted(self._tables))}"
            )

        plan = QueryPlan(rewritten_sql=self._rewrite_sql(sql))
        limit = self._pushable_limit(ast, refs)

        for i, (table_name, nodes) in enumerate(refs.items()):
            node = FetchNode(
                id=f"node_{table_name}_{i}",
                table_name=table_name,
                view_name=table_name,
                limit=limit,
                key_quals=self._key_quals(ast, self._tables[table_name], nodes),
            )
            logger.debug(
                "Planned %s: limit=%s key_quals=%s", node.id, node.limit, node.key_quals
            )
            plan.add_node(node)

        return plan

    # ------------------------------------------------------------------
    # AST helpers
    # ------------------------------------------------------------------

    def _extract_table_refs(
        self, ast: exp.Expression
    ) -> Tuple[Dict[str, List[exp.Table]], List[str]]:
        """
        Walk the AST and collect:
        - served table name → every Table node that reads it, in query order
        - names under the jira schema that this plugin does not serve
        """
        cte_names = {cte.alias_or_name for cte in ast.find_all(exp.CTE)}
        refs: Dict[str, List[exp.Table]] = {}
        unknown: List[str] = []

        for table_node in ast.find_all(exp.Table):
            name = table_node.name
            db = table_node.db
            if not name or name in cte_names:
                continue
            if name not in self._tables:
                if db == SCHEMA or name.startswith(f"{SCHEMA}_"):
                    unknown.append(f"{db}.{name}" if db else name)
                continue
            if db and db != SCHEMA:
                continue
            refs.setdefault(name, []).append(table_node)

        return refs, unknown

    def _pushable_limit(
        self, ast: exp.Expression, refs: Dict[str, List[exp.Table]]
    ) -> Optional[int]:
        # One view feeds every scope that reads the table, so the LIMIT is
        # only safe when the outer SELECT is the sole scope.
        if not isinstance(ast, exp.Select) or len(refs) != 1:
            return None
        if ast.args.get("limit") is None:
            return None
        if any(select is not ast for select in ast.find_all(exp.Select)):
            return None
        if ast.find(exp.With) or ast.find(exp.CTE):
            return None
        for blocker in ("where", "joins", "group", "order", "distinct", "having"):
            if ast.args.get(blocker):
                return None
        if ast.find(exp.AggFunc) or ast.find(exp.Window):
            return None

        limit = _literal_int(ast.args["limit"])
        if limit is None:
            return None
        offset_node = ast.args.get("offset")
        offset = _literal_int(offset_node) if offset_node is not None else 0
        if offset is None:
            return None
        return limit + offset

    def _key_quals(
        self, ast: exp.Expression, table: Table, nodes: List[exp.Table]
    ) -> Dict[str, Any]:
        """
        Equalities on every key column of table's get config, else {}.

        Only for a table read exactly once, directly by the outer SELECT, with
        the equalities in that SELECT's own WHERE. Values must be integer
        literals when the key column is INT.
        """
        if table.get_config is None or not isinstance(ast, exp.Select):
            return {}
        if len(nodes) != 1 or _scope(nodes[0]) is not ast:
            return {}
        where = ast.args.get("where")
        if where is None:
            return {}
        if any(_scope(node) is ast for node in where.find_all(exp.Or, exp.Not)):
            return {}

        aliases = {nodes[0].name.lower()}
        if nodes[0].alias:
            aliases.add(nodes[0].alias.lower())
        column_types = {c.name: c.type for c in table.columns}

        quals: Dict[str, Any] = {}
        for eq_node in where.find_all(exp.EQ):
            if _scope(eq_node) is not ast:
                continue
            col, lit = eq_node.left, eq_node.right
            if isinstance(col, exp.Literal):
                col, lit = lit, col
            if not isinstance(col, exp.Column) or not isinstance(lit, exp.Literal):
                continue
            if col.table and col.table.lower() not in aliases:
                continue
            name = col.name.lower()
            if name not in table.get_config.key_columns:
                continue
            if column_types.get(name) == ColumnType.INT:
                if not lit.is_int:
                    continue
                quals[name] = int(lit.this)
            else:
                quals[name] = lit.this

        if set(quals) != set(table.get_config.key_columns):
            return {}
        return quals

    def _rewrite_sql(self, sql: str) -> str:
        """
        Drop the schema qualifier: 'jira.jira_user' → 'jira_user' (the view).

        Simple string replace is safe here: only served table names are
        replaced, longest first.
        """
        result = sql
        for table_name in sorted(self._tables, key=len, reverse=True):
            result = result.replace(f"{SCHEMA}.{table_name}", table_name)
        return result


def _literal_int(node: exp.Expression) -> Optional[int]:
    lit = node if isinstance(node, exp.Literal) else node.find(exp.Literal)
    if lit is None or not lit.is_int:
        return None
    return int(lit.this)


def _scope(node: exp.Expression) -> Optional[exp.Expression]:
    """Nearest enclosing SELECT: the query scope a node belongs to."""
    return node.find_ancestor(exp.Select)
