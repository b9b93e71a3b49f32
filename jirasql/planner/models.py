from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class FetchNode:
    """
    One table scan needed by a query.

    limit is only set when it is safe to stop the remote scan early, i.e.
    DuckDB would not need rows past it. key_quals is only set when the WHERE
    clause pins every key column of the table's single-item lookup.
    """

    id: str                                         # "node_jira_user_0"
    table_name: str                                 # "jira_user"
    view_name: str                                  # DuckDB view registered for it
    limit: Optional[int] = None
    key_quals: Dict[str, Any] = field(default_factory=dict)


@dataclass
class QueryPlan:
    """
    Table scans plus the SQL DuckDB runs over their views.

    All scans are independent: the engine runs them concurrently.
    """

    nodes: List[FetchNode] = field(default_factory=list)
    rewritten_sql: str = ""

    def add_node(self, node: FetchNode) -> None:
        self.nodes.append(node)

    def node_for(self, table_name: str) -> Optional[FetchNode]:
        for node in self.nodes:
            if node.table_name == table_name:
                return node
        return None
