"""Shared pytest fixtures for jirasql tests (mock-mode Jira, no network)."""
from typing import Any, Dict, List, Optional, Tuple

import pytest

from jirasql.client.jira_client import JiraClient
from jirasql.client.mock_site import MockJiraSite
from jirasql.connection.models import ConnectionConfig


class RecordingClient(JiraClient):
    """Mock-mode client that remembers every request it served."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        self.calls.append((path, dict(params or {})))
        return await super().get_json(path, params)

    def calls_to(self, path: str) -> List[Dict[str, Any]]:
        return [p for (called, p) in self.calls if called == path]


def mock_config(**overrides) -> ConnectionConfig:
    fields = {"connection_id": "test", "base_url": "mock"}
    fields.update(overrides)
    return ConnectionConfig(**fields)


@pytest.fixture
def client() -> RecordingClient:
    return RecordingClient(mock_config())


@pytest.fixture
def small_client() -> RecordingClient:
    """30 users, 10 boards, page size 10: multi-page scans stay small."""
    from jirasql.client.mock_site import _mock_boards, _mock_users

    site = MockJiraSite(users=_mock_users(30), boards=_mock_boards(10))
    return RecordingClient(mock_config(page_size=10), mock_site=site)
