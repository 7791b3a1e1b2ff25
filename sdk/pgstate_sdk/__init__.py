"""
pgstate Python SDK - Client library for the pgstate state store.

Example:
    >>> from sdk.pgstate_sdk import StateClient
    >>>
    >>> with StateClient("http://localhost:3500") as client:
    ...     client.set("order-1", {"status": "new"})
    ...     item = client.get("order-1")
    ...     client.delete("order-1", etag=item.etag)

Invariants:
    - Writes with an etag never create keys
    - transaction() applies deletes before sets

Version: 0.1.0
"""

__version__ = "0.1.0"

from .client import StateClient, StateItem
from .errors import (
    ETagMismatchError,
    InvalidArgumentError,
    ServerError,
    StateClientError,
)

__all__ = [
    "__version__",
    "StateClient",
    "StateItem",
    "StateClientError",
    "InvalidArgumentError",
    "ETagMismatchError",
    "ServerError",
]
