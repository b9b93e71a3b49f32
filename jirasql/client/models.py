from __future__ import annotations
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _JiraRecord(BaseModel):
    """Jira JSON uses camelCase keys; records are read-only snapshots."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )


class JiraUser(_JiraRecord):
    """Row of GET rest/api/2/user/search."""

    account_id: str = ""
    # Jira Server's login name. Absent on Cloud, where account_id is the key.
    username: str = Field(default="", alias="name")
    key: str = ""
    display_name: str = ""
    email_address: Optional[str] = None
    account_type: str = ""
    active: bool = False
    self_url: str = Field(default="", alias="self")
    avatar_urls: Dict[str, str] = Field(default_factory=dict)
    time_zone: Optional[str] = None


class UserGroup(_JiraRecord):
    name: str
    self_url: str = Field(default="", alias="self")


class UserGroups(_JiraRecord):
    size: int = 0
    items: List[UserGroup] = Field(default_factory=list)


class UserWithGroups(JiraUser):
    """GET rest/api/2/user?expand=groups."""

    groups: UserGroups = Field(default_factory=UserGroups)


class JiraBoard(_JiraRecord):
    """Row of GET rest/agile/1.0/board."""

    id: int
    name: str = ""
    self_url: str = Field(default="", alias="self")
    type: str = ""            # 'scrum' | 'kanban' | 'simple'


class BoardFilter(_JiraRecord):
    # Jira sends the filter id as a string; pydantic coerces it.
    id: int
    self_url: str = Field(default="", alias="self")


class BoardSubQuery(_JiraRecord):
    query: str = ""


class BoardConfiguration(_JiraRecord):
    """GET rest/agile/1.0/board/{id}/configuration."""

    id: int
    name: str = ""
    type: str = ""
    filter: Optional[BoardFilter] = None
    sub_query: Optional[BoardSubQuery] = None   # Kanban boards only
