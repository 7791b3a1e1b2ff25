"""
Request and response types for the state store.

Values are stored as JSON documents. Callers may hand in any JSON-encodable
object, or bytes that already hold a UTF-8 JSON document. Reads return the
stored document as raw bytes plus its ETag.

ETags are the decimal text of the row's version counter. They are opaque to
callers but must parse back to an integer before being sent to the backend.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import InvalidArgumentError, InvalidETagError

_ETAG_RE = re.compile(r"[+-]?[0-9]+")


class OperationType(Enum):
    """Operation kinds accepted inside a transaction."""

    UPSERT = "upsert"
    DELETE = "delete"


class Feature(Enum):
    """Optional capabilities advertised to the host runtime."""

    ETAG = "ETAG"
    TRANSACTIONAL = "TRANSACTIONAL"


@dataclass
class GetRequest:
    """Read a single key."""

    key: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class GetResponse:
    """Result of a read.

    An empty response (no data, no etag) means the key does not exist.

    Attributes:
        data: Stored JSON document as UTF-8 bytes
        etag: Row version of the stored document
        metadata: Request metadata echoed back
    """

    data: bytes | None = None
    etag: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.data is not None

    def json(self) -> Any:
        """Decode the stored document, or None on a miss."""
        if self.data is None:
            return None
        return json.loads(self.data)


@dataclass
class SetRequest:
    """Create or update a key.

    Without an etag the write is an unconditional upsert. With an etag the
    write only updates an existing row whose version still matches.
    """

    key: str
    value: Any
    etag: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class DeleteRequest:
    """Remove a key, optionally guarded by an etag."""

    key: str
    etag: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class TransactionalStateOperation:
    """One operation inside a TransactionalStateRequest."""

    operation: OperationType
    request: SetRequest | DeleteRequest


@dataclass
class TransactionalStateRequest:
    """Ordered operations to apply atomically."""

    operations: list[TransactionalStateOperation]
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class BulkGetResponse:
    """Per-key result of a bulk read.

    Attributes:
        key: Requested key
        data: Stored document, None on miss or error
        etag: Row version, None on miss or error
        error: Error message if this key could not be read
    """

    key: str
    data: bytes | None = None
    etag: str | None = None
    error: str | None = None


def require_key(key: str, operation: str) -> None:
    """Reject empty keys.

    Raises:
        InvalidArgumentError: If key is empty
    """
    if not key:
        raise InvalidArgumentError(f"missing key in {operation} operation", key=key)


def parse_etag(etag: str | None, key: str | None = None) -> int | None:
    """Parse an ETag into the backend's row version.

    Args:
        etag: ETag text, or None/empty for "no etag"
        key: Key the etag belongs to (for error context)

    Returns:
        Row version, or None when no etag was supplied

    Raises:
        InvalidETagError: If the etag is not a decimal integer
    """
    if etag is None or etag == "":
        return None
    if not isinstance(etag, str) or not _ETAG_RE.fullmatch(etag):
        raise InvalidETagError(str(etag), key=key)
    return int(etag)


def encode_value(value: Any, key: str | None = None) -> str:
    """Encode a payload as JSON document text.

    Bytes-like payloads must already contain a UTF-8 JSON document; they
    are validated and stored as-is. Anything else goes through json.dumps.

    Raises:
        InvalidArgumentError: If the payload is not a valid JSON document
    """
    if isinstance(value, (bytes, bytearray, memoryview)):
        try:
            text = bytes(value).decode("utf-8")
            json.loads(text)
        except (UnicodeDecodeError, ValueError) as e:
            raise InvalidArgumentError(f"value is not a JSON document: {e}", key=key) from e
        return text

    try:
        return json.dumps(value, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise InvalidArgumentError(f"value is not JSON serializable: {e}", key=key) from e
