"""
pgstate client for Python SDK.

This module provides a synchronous client for the pgstate HTTP API.

Example:
    >>> with StateClient("http://localhost:3500") as client:
    ...     client.set("order-1", {"status": "new"})
    ...     item = client.get("order-1")
    ...     client.set("order-1", {"status": "paid"}, etag=item.etag)

Invariants:
    - A missing key reads as None, never as an error
    - Conflicts surface as ETagMismatchError
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence
from urllib.parse import quote

import httpx

from .errors import StateClientError, error_from_response

logger = logging.getLogger(__name__)


@dataclass
class StateItem:
    """A stored value and its etag.

    Attributes:
        key: State key
        value: Decoded JSON document
        etag: Row version to pass back on conditional writes
        error: Per-key error message (bulk reads only)
    """

    key: str
    value: Any
    etag: Optional[str] = None
    error: Optional[str] = None


class StateClient:
    """Client for the pgstate HTTP API.

    Args:
        base_url: Server URL, e.g. http://localhost:3500
        timeout: Request timeout in seconds
        transport: Optional httpx transport (for testing)
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3500",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    def __enter__(self) -> StateClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise StateClientError(f"request to {self.base_url}{path} failed: {e}") from e

        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = None
            raise error_from_response(response.status_code, body)
        return response

    def get(self, key: str) -> Optional[StateItem]:
        """Read a key. Returns None if it does not exist."""
        response = self._request("GET", _state_path(key))
        if response.status_code == 204:
            return None
        body = response.json()
        return StateItem(key=body["key"], value=body["value"], etag=body.get("etag"))

    def set(self, key: str, value: Any, etag: Optional[str] = None) -> None:
        """Write a key, conditionally if etag is given."""
        self.save([StateItem(key=key, value=value, etag=etag)])

    def save(self, items: Sequence[StateItem]) -> None:
        """Write several keys atomically."""
        payload = [_item_to_json(item) for item in items]
        self._request("POST", "/v1/state", json=payload)

    def delete(self, key: str, etag: Optional[str] = None) -> None:
        """Delete a key, conditionally if etag is given."""
        headers = {"If-Match": etag} if etag else None
        self._request("DELETE", _state_path(key), headers=headers)

    def bulk_get(self, keys: Sequence[str]) -> list[StateItem]:
        """Read several keys. Missing keys come back with value None."""
        response = self._request("POST", "/v1/state/bulk", json={"keys": list(keys)})
        return [
            StateItem(
                key=entry["key"],
                value=entry.get("value"),
                etag=entry.get("etag"),
                error=entry.get("error"),
            )
            for entry in response.json()
        ]

    def transaction(
        self,
        deletes: Sequence[StateItem] = (),
        sets: Sequence[StateItem] = (),
    ) -> None:
        """Apply deletes and sets atomically.

        Deletes always run before sets on the server.
        """
        operations = [
            {"operation": "delete", "request": {"key": d.key, "etag": d.etag}} for d in deletes
        ]
        operations.extend(
            {"operation": "upsert", "request": _item_to_json(s)} for s in sets
        )
        self._request("POST", "/v1/state/transaction", json={"operations": operations})

    def health(self) -> bool:
        try:
            self._request("GET", "/v1/health")
        except StateClientError as e:
            logger.warning(f"Health check failed: {e}")
            return False
        return True


def _item_to_json(item: StateItem) -> dict[str, Any]:
    body: dict[str, Any] = {"key": item.key, "value": item.value}
    if item.etag:
        body["etag"] = item.etag
    return body


def _state_path(key: str) -> str:
    # keys may hold "/", "?" or "#"; escape everything outside the unreserved set
    return f"/v1/state/{quote(key, safe='')}"
