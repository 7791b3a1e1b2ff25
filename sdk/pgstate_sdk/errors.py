"""
Error types for the pgstate SDK.

This module defines all exception types raised by the client:
- StateClientError: Base exception
- InvalidArgumentError: Request rejected by the server (400)
- ETagMismatchError: Key missing or etag stale (409)
- ServerError: Server or backend failure (5xx)

Invariants:
    - All errors inherit from StateClientError
    - error_code mirrors the server's error_code field
"""

from __future__ import annotations

from typing import Any, Optional


class StateClientError(Exception):
    """Base exception for all SDK errors.

    Attributes:
        message: Error message
        code: Error code reported by the server
        status_code: HTTP status code, if a response was received
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "STATE_CLIENT_ERROR"
        self.status_code = status_code


class InvalidArgumentError(StateClientError):
    """The server rejected the request as malformed."""


class ETagMismatchError(StateClientError):
    """No row matched the key and etag.

    Raised when:
    - The key does not exist
    - The etag is stale because the key was written concurrently
    """


class ServerError(StateClientError):
    """The server or its database failed."""


def error_from_response(status_code: int, body: Any) -> StateClientError:
    """Build the matching exception for an error response."""
    if isinstance(body, dict):
        message = str(body.get("error") or f"HTTP {status_code}")
        code = body.get("error_code")
    else:
        message = f"HTTP {status_code}"
        code = None

    if status_code == 400:
        return InvalidArgumentError(message, code=code, status_code=status_code)
    if status_code == 409:
        return ETagMismatchError(message, code=code, status_code=status_code)
    if status_code >= 500:
        return ServerError(message, code=code, status_code=status_code)
    return StateClientError(message, code=code, status_code=status_code)
