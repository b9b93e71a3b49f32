from __future__ import annotations
from typing import Optional
from pydantic import BaseModel, Field


class ConnectionConfig(BaseModel):
    """Configuration for reaching one Jira site."""

    connection_id: str
    base_url: str                      # 'https://acme.atlassian.net' or 'mock'
    auth_type: str = "basic"           # 'basic' | 'bearer'
    username: str = ""                 # account email, basic auth only
    credential_ref: str = ""           # 'env://VAR_NAME' or raw token (dev only)

    # Paging hint: the scanner never requests more than this per page.
    page_size: int = Field(default=1000, gt=0)

    # Ceiling on concurrent hydrate calls per hydrate function.
    # Jira Cloud starts answering 429 well before 100 parallel calls.
    hydrate_max_concurrency: int = Field(default=50, gt=0)

    request_timeout_s: float = 10.0

    display_name: Optional[str] = None
