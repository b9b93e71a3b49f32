from __future__ import annotations
from typing import AsyncIterator, List, Optional

from jirasql.client.jira_client import JiraClient
from jirasql.client.models import JiraUser, UserGroup
from jirasql.plugin.models import (
    Column,
    ColumnType,
    HydrateConfig,
    ListConfig,
    QueryContext,
    Table,
)
from jirasql.plugin.scan import paginate
from jirasql.plugin.transform import from_field, from_go, from_hydrate
from jirasql.tables.columns import COLUMN_DESCRIPTION_TITLE


async def list_users(client: JiraClient, ctx: QueryContext) -> AsyncIterator[JiraUser]:
    async for user in paginate(
        client.search_users,
        limit=ctx.limit,
        page_size=client.config.page_size,
        name="jira_user.list_users",
    ):
        yield user


async def get_user_groups(client: JiraClient, user: JiraUser) -> List[UserGroup]:
    return await client.get_user_groups(user)


def group_names(groups: Optional[List[UserGroup]]) -> List[str]:
    return [g.name for g in groups or []]


# Limit concurrency to stay clear of 429 Too Many Requests.
GROUPS_MAX_CONCURRENCY = 50

TABLE = Table(
    name="jira_user",
    description="User in the Jira cloud.",
    list_config=ListConfig(hydrate=list_users),
    hydrate_configs=[
        HydrateConfig(func=get_user_groups, max_concurrency=GROUPS_MAX_CONCURRENCY),
    ],
    columns=[
        Column(
            name="display_name",
            type=ColumnType.STRING,
            description="The display name of the user. Depending on the user's privacy setting, this may return an alternative value.",
        ),
        Column(
            name="username",
            type=ColumnType.STRING,
            description="The username of the user.",
            transform=from_go(),
        ),
        Column(
            name="account_id",
            type=ColumnType.STRING,
            description="The account ID of the user, which uniquely identifies the user across all Atlassian products. For example, 5b10ac8d82e05b22cc7d4ef5.",
            transform=from_go(),
        ),
        Column(
            name="email_address",
            type=ColumnType.STRING,
            description="The email address of the user. Depending on the user's privacy setting, this may be returned as null.",
        ),
        Column(
            name="account_type",
            type=ColumnType.STRING,
            description="The user account type. Can take the following values: atlassian, app, customer and unknown.",
        ),
        Column(
            name="active",
            type=ColumnType.BOOL,
            description="Indicates if user is active.",
            transform=from_field("active"),
        ),
        Column(
            name="self",
            type=ColumnType.STRING,
            description="The URL of the user.",
            transform=from_field("self_url"),
        ),
        Column(
            name="avatar_urls",
            type=ColumnType.JSON,
            description="The avatars of the user.",
        ),
        Column(
            name="group_names",
            type=ColumnType.JSON,
            description="The groups that the user belongs to.",
            hydrate=get_user_groups,
            transform=from_hydrate(group_names),
        ),
        Column(
            name="title",
            type=ColumnType.STRING,
            description=COLUMN_DESCRIPTION_TITLE,
            transform=from_field("display_name"),
        ),
    ],
)
