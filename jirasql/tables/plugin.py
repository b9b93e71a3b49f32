from __future__ import annotations
from typing import Dict

from jirasql.plugin.models import Table
from jirasql.tables import jira_board, jira_user

PLUGIN_NAME = "jira"


def plugin_tables() -> Dict[str, Table]:
    """Every table this plugin serves, keyed by table name."""
    return {t.name: t for t in (jira_board.TABLE, jira_user.TABLE)}
