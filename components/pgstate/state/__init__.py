"""
State module for pgstate - key-value access over PostgreSQL.

This module handles:
- Request/response types and ETag parsing
- The pooled PostgreSQL access layer (optimistic concurrency, batches)
- The component surface consumed by host runtimes

Invariants:
    - ETags are row versions assigned by PostgreSQL, never by Python
    - Zero rows affected by a mutation is always an error
    - Batches commit only if every operation affected exactly one row
"""

from .dbaccess import PostgresDBAccess, check_single_row
from .postgresql import PostgreSQLStore
from .types import (
    BulkGetResponse,
    DeleteRequest,
    Feature,
    GetRequest,
    GetResponse,
    OperationType,
    SetRequest,
    TransactionalStateOperation,
    TransactionalStateRequest,
)

__all__ = [
    "PostgresDBAccess",
    "PostgreSQLStore",
    "check_single_row",
    "BulkGetResponse",
    "DeleteRequest",
    "Feature",
    "GetRequest",
    "GetResponse",
    "OperationType",
    "SetRequest",
    "TransactionalStateOperation",
    "TransactionalStateRequest",
]
