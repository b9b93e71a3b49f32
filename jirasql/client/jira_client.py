from __future__ import annotations
import asyncio
import base64
import json
import logging
import os
from typing import Any, Dict, List, Optional, Type, TypeVar

import aiohttp
from opentelemetry import trace
from pydantic import BaseModel, ValidationError

from jirasql.client.errors import (
    DecodeError,
    JiraConnectionError,
    NotFoundError,
    TransportError,
)
from jirasql.client.mock_site import MockJiraSite
from jirasql.client.models import (
    BoardConfiguration,
    JiraBoard,
    JiraUser,
    UserGroup,
    UserWithGroups,
)
from jirasql.connection.models import ConnectionConfig
from jirasql.plugin.models import Page

logger = logging.getLogger(__name__)
tracer = trace.get_tracer("jirasql.client")

M = TypeVar("M", bound=BaseModel)

_BODY_LOG_LIMIT = 2000


class JiraClient:
    """
    Explicit handle to one Jira site.

    Created once per connection and passed by reference into every scan and
    hydrate call. Owns its aiohttp.ClientSession unless one is injected.

    Demo mode (config.base_url == "mock"): requests are answered by
    MockJiraSite; no network, no credentials.

    Error mapping for every request:
      404                      → NotFoundError
      other HTTP / network     → TransportError (with status + body)
      body not JSON / bad shape → DecodeError
    Nothing is retried here; callers decide whether to re-run.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        session: Optional[aiohttp.ClientSession] = None,
        mock_site: Optional[MockJiraSite] = None,
    ) -> None:
        self.config = config
        self._session = session
        self._own_session = session is None
        self._logger = logging.getLogger(f"jirasql.client.{config.connection_id}")

        if self.is_mock:
            self._mock = mock_site or MockJiraSite()
            self._token = ""
        else:
            self._mock = None
            if not config.base_url.startswith(("http://", "https://")):
                raise JiraConnectionError(
                    f"{config.connection_id}: base_url must be http(s), got {config.base_url!r}"
                )
            self._token = _resolve_credential(config)

    @property
    def is_mock(self) -> bool:
        return self.config.base_url == "mock"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout_s)
            )
        return self._session

    async def close(self) -> None:
        if self._own_session and self._session and not self._session.closed:
            await self._session.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _auth_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.auth_type == "bearer":
            headers["Authorization"] = f"Bearer {self._token}"
        elif self.config.auth_type == "basic":
            raw = f"{self.config.username}:{self._token}".encode()
            headers["Authorization"] = f"Basic {base64.b64encode(raw).decode()}"
        return headers

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Perform one authenticated GET against path (relative to base_url)."""
        params = params or {}
        if self._mock is not None:
            return self._mock.get(path, params)

        session = await self._get_session()
        url = self.config.base_url.rstrip("/") + "/" + path.lstrip("/")

        with tracer.start_as_current_span(
            "jira.get",
            attributes={"jira.connection": self.config.connection_id, "jira.path": path},
        ) as span:
            try:
                async with session.get(url, params=params, headers=self._auth_headers()) as resp:
                    status = resp.status
                    body = await resp.text()
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                self._logger.error("GET %s failed: %r", path, exc)
                raise TransportError(f"GET {path} failed: {exc!r}") from exc

            span.set_attribute("http.status_code", status)

            if status == 404:
                self._logger.debug("GET %s → 404", path)
                raise NotFoundError(f"GET {path}: not found", body=body[:_BODY_LOG_LIMIT])
            if status >= 400:
                self._logger.error(
                    "GET %s → HTTP %d, response: %s", path, status, body[:_BODY_LOG_LIMIT]
                )
                raise TransportError(
                    f"GET {path}: HTTP {status}", status=status, body=body[:_BODY_LOG_LIMIT]
                )

        try:
            return json.loads(body)
        except ValueError as exc:
            self._logger.error("GET %s returned non-JSON body: %s", path, body[:_BODY_LOG_LIMIT])
            raise DecodeError(f"GET {path}: invalid JSON: {exc}", body=body[:_BODY_LOG_LIMIT]) from exc

    def _decode(self, model: Type[M], raw: Any, path: str) -> M:
        try:
            return model.model_validate(raw)
        except ValidationError as exc:
            self._logger.error("GET %s: unexpected %s shape: %s", path, model.__name__, exc)
            raise DecodeError(f"GET {path}: unexpected {model.__name__} shape: {exc}") from exc

    def _decode_list(self, model: Type[M], raw: Any, path: str) -> List[M]:
        if not isinstance(raw, list):
            raise DecodeError(f"GET {path}: expected a JSON array, got {type(raw).__name__}")
        return [self._decode(model, r, path) for r in raw]

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def search_users(self, start_at: int, max_results: int) -> Page[JiraUser]:
        """
        GET rest/api/2/user/search. Returns a bare array: no total, so the
        scanner relies on short-page detection.
        """
        path = "rest/api/2/user/search"
        raw = await self.get_json(
            path, {"username": ".", "startAt": start_at, "maxResults": max_results}
        )
        return Page(items=self._decode_list(JiraUser, raw, path), start_at=start_at)

    async def get_user_groups(self, user: JiraUser) -> List[UserGroup]:
        # Server keys users by name; Cloud only has accountId.
        path = "rest/api/2/user"
        params: Dict[str, Any] = {"expand": "groups"}
        if user.username:
            params["username"] = user.username
        else:
            params["accountId"] = user.account_id
        raw = await self.get_json(path, params)
        return list(self._decode(UserWithGroups, raw, path).groups.items)

    # ------------------------------------------------------------------
    # Boards
    # ------------------------------------------------------------------

    async def list_boards(self, start_at: int, max_results: int) -> Page[JiraBoard]:
        path = "rest/agile/1.0/board"
        raw = await self.get_json(path, {"startAt": start_at, "maxResults": max_results})
        if not isinstance(raw, dict):
            raise DecodeError(f"GET {path}: expected a JSON object, got {type(raw).__name__}")
        return Page(
            items=self._decode_list(JiraBoard, raw.get("values", []), path),
            start_at=raw.get("startAt", start_at),
            total=raw.get("total"),
            max_results=raw.get("maxResults"),
        )

    async def get_board(self, board_id: int) -> Optional[JiraBoard]:
        """Single-board lookup. A missing board is None, not an error."""
        path = f"rest/agile/1.0/board/{board_id}"
        try:
            raw = await self.get_json(path)
        except NotFoundError:
            return None
        return self._decode(JiraBoard, raw, path)

    async def get_board_configuration(self, board_id: int) -> BoardConfiguration:
        path = f"rest/agile/1.0/board/{board_id}/configuration"
        return self._decode(BoardConfiguration, await self.get_json(path), path)


def _resolve_credential(config: ConnectionConfig) -> str:
    cred_ref = config.credential_ref
    if cred_ref.startswith("env://"):
        var = cred_ref[len("env://"):]
        token = os.environ.get(var, "")
        if not token:
            raise JiraConnectionError(
                f"{config.connection_id}: credential env var {var!r} is not set"
            )
        return token
    if not cred_ref:
        raise JiraConnectionError(f"{config.connection_id}: no credential_ref configured")
    return cred_ref  # raw token for dev


def connect(
    config: ConnectionConfig,
    session: Optional[aiohttp.ClientSession] = None,
) -> JiraClient:
    """Build the client handle for a connection. Raises JiraConnectionError."""
    try:
        return JiraClient(config, session=session)
    except JiraConnectionError as exc:
        logger.error("connection_error for %s: %s", config.connection_id, exc)
        raise
