from __future__ import annotations
from typing import Any, AsyncIterator, Dict, Optional

from jirasql.client.jira_client import JiraClient
from jirasql.client.models import BoardConfiguration, JiraBoard
from jirasql.plugin.models import (
    Column,
    ColumnType,
    GetConfig,
    ListConfig,
    QueryContext,
    Table,
)
from jirasql.plugin.scan import paginate
from jirasql.plugin.transform import from_field, from_go
from jirasql.tables.columns import COLUMN_DESCRIPTION_TITLE


async def list_boards(client: JiraClient, ctx: QueryContext) -> AsyncIterator[JiraBoard]:
    async for board in paginate(
        client.list_boards,
        limit=ctx.limit,
        page_size=client.config.page_size,
        name="jira_board.list_boards",
    ):
        yield board


async def get_board(client: JiraClient, key_quals: Dict[str, Any]) -> Optional[JiraBoard]:
    try:
        board_id = int(key_quals.get("id") or 0)
    except (TypeError, ValueError):
        return None
    if board_id == 0:
        return None
    return await client.get_board(board_id)


async def get_board_configuration(client: JiraClient, board: JiraBoard) -> BoardConfiguration:
    return await client.get_board_configuration(board.id)


TABLE = Table(
    name="jira_board",
    description=(
        "A board displays issues from one or more projects, giving you a flexible "
        "way of viewing, managing, and reporting on work in progress."
    ),
    list_config=ListConfig(hydrate=list_boards),
    get_config=GetConfig(key_columns=["id"], hydrate=get_board),
    columns=[
        Column(
            name="id",
            type=ColumnType.INT,
            description="The ID of the board.",
            transform=from_go(),
        ),
        Column(
            name="name",
            type=ColumnType.STRING,
            description="The name of the board.",
        ),
        Column(
            name="self",
            type=ColumnType.STRING,
            description="The URL of the board details.",
            transform=from_field("self_url"),
        ),
        Column(
            name="type",
            type=ColumnType.STRING,
            description="The board type of the board. Valid values are simple, scrum and kanban.",
        ),
        Column(
            name="filter_id",
            type=ColumnType.INT,
            description="Filter id of the board.",
            hydrate=get_board_configuration,
            transform=from_field("filter.id"),
        ),
        Column(
            name="sub_query",
            type=ColumnType.STRING,
            description="JQL subquery used by the given board - (Kanban only).",
            hydrate=get_board_configuration,
            transform=from_field("sub_query.query"),
        ),
        Column(
            name="title",
            type=ColumnType.STRING,
            description=COLUMN_DESCRIPTION_TITLE,
            transform=from_field("name"),
        ),
    ],
)
