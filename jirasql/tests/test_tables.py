"""Tests for jira_user / jira_board through the TableExecutor (mock-mode Jira)."""
import asyncio
import dataclasses

import pytest

from jirasql.client.errors import TransportError
from jirasql.plugin.executor import TableExecutor
from jirasql.plugin.models import HydrateConfig, QueryContext
from jirasql.tables import jira_board, jira_user
from jirasql.tables.plugin import plugin_tables

from conftest import RecordingClient, mock_config


async def _rows(client, table, **ctx):
    executor = TableExecutor(client)
    rows = [row async for row in executor.execute(table, QueryContext(**ctx))]
    return rows, executor


# ---------------------------------------------------------------------------
# jira_user
# ---------------------------------------------------------------------------

class TestJiraUser:
    @pytest.mark.asyncio
    async def test_limit_10_one_small_page(self, client):
        rows, executor = await _rows(client, jira_user.TABLE, limit=10)
        assert len(rows) == 10
        searches = client.calls_to("rest/api/2/user/search")
        assert searches == [{"username": ".", "startAt": 0, "maxResults": 10}]
        assert len(client.calls_to("rest/api/2/user")) == 10
        assert executor.errors == []

    @pytest.mark.asyncio
    async def test_full_scan_pages(self, client):
        rows, _ = await _rows(client, jira_user.TABLE)
        assert len(rows) == 2500
        offsets = [p["startAt"] for p in client.calls_to("rest/api/2/user/search")]
        assert offsets == [0, 1000, 2000]

    @pytest.mark.asyncio
    async def test_row_shape(self, client):
        rows, _ = await _rows(client, jira_user.TABLE, limit=3)
        for row in rows:
            assert set(row) == set(jira_user.TABLE.column_names())
            assert row["title"] == row["display_name"]
            assert row["self"].startswith("https://")
            assert isinstance(row["active"], bool)
            assert "jira-software-users" in row["group_names"]
            assert any(g.startswith("team-") for g in row["group_names"])

    @pytest.mark.asyncio
    async def test_full_projection_even_when_columns_requested(self, client):
        rows, _ = await _rows(client, jira_user.TABLE, limit=2, columns=["display_name"])
        assert set(rows[0]) == set(jira_user.TABLE.column_names())

    @pytest.mark.asyncio
    async def test_hydrate_failure_drops_only_that_row(self, small_client):
        class _FlakyGroups(RecordingClient):
            async def get_user_groups(self, user):
                if user.username == "user0005":
                    raise TransportError("GET rest/api/2/user: HTTP 500", status=500)
                return await super().get_user_groups(user)

        flaky = _FlakyGroups(small_client.config, mock_site=small_client._mock)
        rows, executor = await _rows(flaky, jira_user.TABLE)
        assert len(rows) == 29
        assert "user0005" not in {r["username"] for r in rows}
        assert len(executor.errors) == 1
        assert executor.errors[0].table == "jira_user"

    @pytest.mark.asyncio
    async def test_list_failure_aborts_scan_but_keeps_emitted_rows(self, small_client):
        class _DiesOnThirdPage(RecordingClient):
            async def search_users(self, start_at, max_results):
                if start_at == 20:
                    raise TransportError("GET rest/api/2/user/search: HTTP 503", status=503)
                return await super().search_users(start_at, max_results)

        dying = _DiesOnThirdPage(small_client.config, mock_site=small_client._mock)
        executor = TableExecutor(dying)
        received = []
        with pytest.raises(TransportError):
            async for row in executor.execute(jira_user.TABLE, QueryContext()):
                received.append(row)
        # Users from the two good pages are hydrated and emitted before the error.
        assert len(received) == 20
        assert len(dying.calls_to("rest/api/2/user")) == 20

    @pytest.mark.asyncio
    async def test_hydrate_concurrency_bounded(self, small_client):
        active = 0
        peak = 0

        class _SlowGroups(RecordingClient):
            async def get_user_groups(self, user):
                nonlocal active, peak
                active += 1
                peak = max(peak, active)
                try:
                    await asyncio.sleep(0.005)
                    return await super().get_user_groups(user)
                finally:
                    active -= 1

        table = dataclasses.replace(
            jira_user.TABLE,
            hydrate_configs=[HydrateConfig(func=jira_user.get_user_groups, max_concurrency=3)],
        )
        slow = _SlowGroups(small_client.config, mock_site=small_client._mock)
        rows, _ = await _rows(slow, table)
        assert len(rows) == 30
        assert peak <= 3

    @pytest.mark.asyncio
    async def test_pending_hydrates_bounded_by_pool(self, small_client):
        peak_tasks = 0

        class _CountingGroups(RecordingClient):
            async def get_user_groups(self, user):
                nonlocal peak_tasks
                peak_tasks = max(peak_tasks, len(asyncio.all_tasks()))
                await asyncio.sleep(0.001)
                return await super().get_user_groups(user)

        table = dataclasses.replace(
            jira_user.TABLE,
            hydrate_configs=[HydrateConfig(func=jira_user.get_user_groups, max_concurrency=3)],
        )
        counting = _CountingGroups(small_client.config, mock_site=small_client._mock)
        rows, _ = await _rows(counting, table)
        assert len(rows) == 30
        # Three hydrate tasks plus the test's own task, not one task per user.
        assert peak_tasks <= 5

    def test_group_names_transform(self):
        assert jira_user.group_names(None) == []


# ---------------------------------------------------------------------------
# jira_board
# ---------------------------------------------------------------------------

class TestJiraBoard:
    @pytest.mark.asyncio
    async def test_list_all(self, client):
        rows, _ = await _rows(client, jira_board.TABLE)
        assert len(rows) == 25
        assert len(client.calls_to("rest/agile/1.0/board")) == 1

    @pytest.mark.asyncio
    async def test_multi_page_by_total(self, small_client):
        rows, _ = await _rows(small_client, jira_board.TABLE)
        assert len(rows) == 10
        # 10 boards, page size 10, total reported: no trailing empty page.
        assert len(small_client.calls_to("rest/agile/1.0/board")) == 1

    @pytest.mark.asyncio
    async def test_configuration_columns(self, client):
        rows, _ = await _rows(client, jira_board.TABLE)
        for row in rows:
            assert row["filter_id"] == 10000 + row["id"]
            assert row["title"] == row["name"]
            if row["type"] == "kanban":
                assert row["sub_query"]
            else:
                assert row["sub_query"] is None

    @pytest.mark.asyncio
    async def test_get_by_id(self, client):
        rows, _ = await _rows(client, jira_board.TABLE, key_quals={"id": 3})
        assert [r["id"] for r in rows] == [3]
        paths = [path for path, _ in client.calls]
        assert paths == ["rest/agile/1.0/board/3", "rest/agile/1.0/board/3/configuration"]

    @pytest.mark.asyncio
    async def test_get_nonexistent_id_is_empty_not_error(self, client):
        rows, executor = await _rows(client, jira_board.TABLE, key_quals={"id": 99999})
        assert rows == []
        assert executor.errors == []

    @pytest.mark.asyncio
    async def test_get_non_integer_id_is_empty(self, client):
        assert await jira_board.get_board(client, {"id": "abc"}) is None
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_get_id_zero_skips_request(self, client):
        rows, _ = await _rows(client, jira_board.TABLE, key_quals={"id": 0})
        assert rows == []
        assert client.calls == []


# ---------------------------------------------------------------------------
# Plugin
# ---------------------------------------------------------------------------

class TestPlugin:
    def test_tables_registered(self):
        assert set(plugin_tables()) == {"jira_user", "jira_board"}

    def test_every_table_has_title(self):
        for table in plugin_tables().values():
            assert "title" in table.column_names()

    def test_only_board_has_get(self):
        tables = plugin_tables()
        assert tables["jira_board"].get_config.key_columns == ["id"]
        assert tables["jira_user"].get_config is None

    def test_default_concurrency_from_connection(self):
        client = RecordingClient(mock_config(hydrate_max_concurrency=7))
        assert TableExecutor(client)._default_max_concurrency == 7
