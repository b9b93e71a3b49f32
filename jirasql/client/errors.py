from __future__ import annotations
from typing import Optional


class JiraError(Exception):
    """Base class for every error raised by the Jira data-source layer."""


class JiraConnectionError(JiraError):
    """The client handle could not be established (bad config, missing credential)."""


class TransportError(JiraError):
    """
    Request construction or network/HTTP failure.

    status is None when no response was received at all.
    body holds the (possibly truncated) response text for logging.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: str = "",
    ) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class NotFoundError(TransportError):
    """404 from the remote API. Single-item lookups treat this as "no row"."""

    def __init__(self, message: str, body: str = "") -> None:
        super().__init__(message, status=404, body=body)


class DecodeError(JiraError):
    """Response body was not JSON or did not match the expected record shape."""

    def __init__(self, message: str, body: str = "") -> None:
        super().__init__(message)
        self.body = body
