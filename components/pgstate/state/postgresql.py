"""
PostgreSQL state store component.

This is the surface consumed by a host runtime. It is configured from
component metadata and delegates storage work to PostgresDBAccess.

Invariants:
    - Transactions apply all deletes before all upserts
    - Bulk writes are atomic
    - Bulk reads report per-key errors instead of failing the whole call
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence

from ..config import PostgresConfig
from ..errors import InvalidArgumentError, StateStoreError
from .dbaccess import PostgresDBAccess
from .types import (
    BulkGetResponse,
    DeleteRequest,
    Feature,
    GetRequest,
    GetResponse,
    OperationType,
    SetRequest,
    TransactionalStateRequest,
)

logger = logging.getLogger(__name__)


class PostgreSQLStore:
    """State store backed by a PostgreSQL table.

    Example:
        >>> store = PostgreSQLStore()
        >>> store.init({"connectionString": "postgresql://localhost/state"})
        >>> store.set(SetRequest(key="order-1", value={"status": "new"}))
        >>> store.get(GetRequest(key="order-1")).json()
        {'status': 'new'}
    """

    def __init__(self, dbaccess: PostgresDBAccess | None = None) -> None:
        self.dbaccess = dbaccess or PostgresDBAccess()

    def init(self, metadata: Mapping[str, str]) -> None:
        """Initialize from component metadata properties.

        Raises:
            InitializationError: If the store cannot become ready
        """
        self.dbaccess.init(PostgresConfig.from_metadata(metadata))

    def features(self) -> list[Feature]:
        return [Feature.ETAG, Feature.TRANSACTIONAL]

    def get(self, req: GetRequest) -> GetResponse:
        return self.dbaccess.get(req)

    def set(self, req: SetRequest) -> None:
        self.dbaccess.set(req)

    def delete(self, req: DeleteRequest) -> None:
        self.dbaccess.delete(req)

    def bulk_get(self, requests: Sequence[GetRequest]) -> list[BulkGetResponse]:
        """Read several keys independently.

        A key that fails to read carries its error message; the others
        are still returned.
        """
        responses = []
        for req in requests:
            try:
                resp = self.dbaccess.get(req)
            except StateStoreError as e:
                logger.warning(f"Bulk get failed for key {req.key!r}: {e}")
                responses.append(BulkGetResponse(key=req.key, error=e.message))
                continue
            responses.append(BulkGetResponse(key=req.key, data=resp.data, etag=resp.etag))
        return responses

    def bulk_set(self, requests: Sequence[SetRequest]) -> None:
        self.dbaccess.execute_multi(sets=requests)

    def bulk_delete(self, requests: Sequence[DeleteRequest]) -> None:
        self.dbaccess.execute_multi(deletes=requests)

    def multi(self, request: TransactionalStateRequest) -> None:
        """Apply a transaction of upserts and deletes atomically.

        Raises:
            InvalidArgumentError: If an operation does not match its request type
        """
        sets: list[SetRequest] = []
        deletes: list[DeleteRequest] = []

        for op in request.operations:
            if op.operation == OperationType.UPSERT:
                if not isinstance(op.request, SetRequest):
                    raise InvalidArgumentError("expecting set request")
                sets.append(op.request)
            elif op.operation == OperationType.DELETE:
                if not isinstance(op.request, DeleteRequest):
                    raise InvalidArgumentError("expecting delete request")
                deletes.append(op.request)
            else:
                raise InvalidArgumentError(f"unsupported operation: {op.operation}")

        if sets or deletes:
            self.dbaccess.execute_multi(deletes=deletes, sets=sets)

    def ping(self) -> None:
        self.dbaccess.ping()

    def close(self) -> None:
        self.dbaccess.close()
