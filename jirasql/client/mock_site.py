from __future__ import annotations
import random
from typing import Any, Dict, List, Optional

from jirasql.client.errors import NotFoundError

_SITE = "https://mock.atlassian.net"
_TEAMS = ["mobile", "web", "api", "infra", "data"]
_ACCOUNT_TYPES = ["atlassian", "atlassian", "atlassian", "app", "customer"]
_BOARD_TYPES = ["scrum", "kanban", "simple"]
_KANBAN_SUBQUERY = "fixVersion in unreleasedVersions() OR fixVersion is EMPTY"


def _mock_users(n: int = 2500) -> List[Dict]:
    rng = random.Random(7)
    rows = []
    for i in range(1, n + 1):
        name = f"user{i:04d}"
        team = _TEAMS[i % len(_TEAMS)]
        rows.append({
            "self": f"{_SITE}/rest/api/2/user?username={name}",
            "key": name,
            "name": name,
            "accountId": f"5b10ac8d82e05b22cc{i:06d}",
            "accountType": _ACCOUNT_TYPES[i % len(_ACCOUNT_TYPES)],
            "emailAddress": f"{name}@company.com" if rng.random() > 0.1 else None,
            "displayName": f"User {i} ({team})",
            "active": i % 7 != 0,
            "timeZone": "Europe/London",
            "avatarUrls": {
                "48x48": f"{_SITE}/secure/useravatar?ownerId={name}&size=48",
                "16x16": f"{_SITE}/secure/useravatar?ownerId={name}&size=16",
            },
            "_groups": ["jira-software-users", f"team-{team}"],
        })
    return rows


def _mock_boards(n: int = 25) -> List[Dict]:
    rows = []
    for i in range(1, n + 1):
        rows.append({
            "id": i,
            "self": f"{_SITE}/rest/agile/1.0/board/{i}",
            "name": f"{_TEAMS[i % len(_TEAMS)].upper()} board {i}",
            "type": _BOARD_TYPES[i % len(_BOARD_TYPES)],
        })
    return rows


_MOCK_USERS = _mock_users()
_MOCK_BOARDS = _mock_boards()


class MockJiraSite:
    """
    In-memory stand-in for the handful of Jira endpoints the tables use.

    Honours startAt/maxResults exactly like the real API so paging code
    runs unchanged against it. Caps board pages at 50, as the agile API does.
    """

    BOARD_PAGE_CAP = 50

    def __init__(
        self,
        users: Optional[List[Dict]] = None,
        boards: Optional[List[Dict]] = None,
    ) -> None:
        self.users = _MOCK_USERS if users is None else users
        self.boards = _MOCK_BOARDS if boards is None else boards

    def get(self, path: str, params: Dict[str, Any]) -> Any:
        parts = path.strip("/").split("/")

        if parts == ["rest", "api", "2", "user", "search"]:
            start, size = _window(params, cap=1000)
            return [_public(u) for u in self.users[start:start + size]]

        if parts == ["rest", "api", "2", "user"]:
            return self._user_with_groups(params)

        if parts[:4] == ["rest", "agile", "1.0", "board"]:
            if len(parts) == 4:
                start, size = _window(params, cap=self.BOARD_PAGE_CAP)
                values = self.boards[start:start + size]
                return {
                    "maxResults": size,
                    "startAt": start,
                    "total": len(self.boards),
                    "isLast": start + len(values) >= len(self.boards),
                    "values": values,
                }
            board = self._board(parts[4])
            if len(parts) == 5:
                return board
            if len(parts) == 6 and parts[5] == "configuration":
                return self._board_configuration(board)

        raise NotFoundError(f"mock: no endpoint for {path}")

    def _user_with_groups(self, params: Dict[str, Any]) -> Dict:
        username = params.get("username")
        account_id = params.get("accountId")
        for u in self.users:
            if (username and u["name"] == username) or (account_id and u["accountId"] == account_id):
                groups = [
                    {"name": g, "self": f"{_SITE}/rest/api/2/group?groupname={g}"}
                    for g in u.get("_groups", [])
                ]
                return {**_public(u), "groups": {"size": len(groups), "items": groups}}
        raise NotFoundError(f"mock: user not found: {username or account_id}")

    def _board(self, raw_id: str) -> Dict:
        for b in self.boards:
            if str(b["id"]) == raw_id:
                return b
        raise NotFoundError(f"mock: board not found: {raw_id}")

    def _board_configuration(self, board: Dict) -> Dict:
        cfg = {
            "id": board["id"],
            "name": board["name"],
            "type": board["type"],
            "filter": {
                "id": str(10000 + board["id"]),
                "self": f"{_SITE}/rest/api/2/filter/{10000 + board['id']}",
            },
        }
        if board["type"] == "kanban":
            cfg["subQuery"] = {"query": _KANBAN_SUBQUERY}
        return cfg


def _window(params: Dict[str, Any], cap: int) -> tuple[int, int]:
    start = int(params.get("startAt", 0))
    size = min(int(params.get("maxResults", 50)), cap)
    return start, size


def _public(user: Dict) -> Dict:
    return {k: v for k, v in user.items() if not k.startswith("_")}
