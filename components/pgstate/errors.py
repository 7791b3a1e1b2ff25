"""
Error types for the pgstate state store.

This module defines all exception types raised by the store:
- StateStoreError: Base exception
- InvalidArgumentError: Request rejected before touching the backend
- InvalidETagError: ETag is not a valid row version
- NotFoundOrConflictError: Mutation matched no row (missing key or stale ETag)
- InvariantViolationError: Mutation matched more than one row
- BackendError: PostgreSQL or connection pool failure
- InitializationError: Store could not become ready

Invariants:
    - All errors inherit from StateStoreError
    - Errors carry a stable code for programmatic handling
    - No error is retried inside the store
"""

from __future__ import annotations

from typing import Any


class StateStoreError(Exception):
    """Base exception for all state store errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "STATE_STORE_ERROR"
        self.details = details or {}


class InvalidArgumentError(StateStoreError):
    """Request is malformed.

    Raised when:
    - Key is empty
    - Payload cannot be encoded as a JSON document
    - Transaction operation does not match its request type
    """

    def __init__(
        self,
        message: str,
        key: str | None = None,
        code: str = "INVALID_ARGUMENT",
    ) -> None:
        super().__init__(message, code=code, details={"key": key})
        self.key = key


class InvalidETagError(InvalidArgumentError):
    """ETag cannot be parsed back into a row version."""

    def __init__(self, etag: str, key: str | None = None) -> None:
        super().__init__(f"invalid etag value: {etag!r}", key=key, code="INVALID_ETAG")
        self.details["etag"] = etag
        self.etag = etag


class NotFoundOrConflictError(StateStoreError):
    """A keyed mutation affected zero rows.

    The key either does not exist or its current ETag differs from the
    one supplied. The two causes are not distinguished.
    """

    def __init__(
        self,
        message: str = "database operation failed: no rows match given key and etag",
        key: str | None = None,
    ) -> None:
        super().__init__(message, code="ETAG_MISMATCH", details={"key": key})
        self.key = key


class InvariantViolationError(StateStoreError):
    """A keyed mutation affected more than one row.

    Indicates a broken primary key on the state table. Never retried.
    """

    def __init__(
        self,
        message: str = "database operation failed: more than one row affected, expected one",
        key: str | None = None,
        rows_affected: int | None = None,
    ) -> None:
        super().__init__(
            message,
            code="INVARIANT_VIOLATION",
            details={"key": key, "rows_affected": rows_affected},
        )
        self.key = key
        self.rows_affected = rows_affected


class BackendError(StateStoreError):
    """PostgreSQL, driver or pool failure.

    The original exception is kept as ``__cause__``.
    """

    def __init__(self, message: str, operation: str | None = None) -> None:
        super().__init__(message, code="BACKEND_ERROR", details={"operation": operation})
        self.operation = operation


class InitializationError(StateStoreError):
    """The store could not be initialized.

    Raised when:
    - Connection string is missing or empty
    - Backend is unreachable
    - The state table cannot be created
    """

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INITIALIZATION_ERROR")
