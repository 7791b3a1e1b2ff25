"""
PostgreSQL access layer for the state store.

This module owns the connection pool and translates Get/Set/Delete and
transactional batches into statements against a single table:

    state:
        - key varchar(200) PRIMARY KEY
        - value json
        - insertdate timestamptz DEFAULT NOW()
        - updatedate timestamptz NULL

The row's ``xmin`` system column is the ETag. Postgres assigns a new xmin
on every write to a row, so a conditional statement ``WHERE key = %s AND
xmin = %s`` only matches if nobody wrote the row since it was read.

Invariants:
    - Every keyed mutation affects exactly one row or raises
    - Zero rows affected always means NotFoundOrConflictError
    - A batch runs on one connection inside one transaction
    - Requests are validated before any statement is sent
    - No retries and no in-process locking

How to change safely:
    - Keep ETag comparisons inside the WHERE clause, never read-then-write
    - Route every mutation through _execute_single so the row count is checked
    - Test with concurrent writers against a real PostgreSQL
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass

import psycopg
from psycopg import sql
from psycopg_pool import ConnectionPool

from ..config import PostgresConfig
from ..errors import (
    BackendError,
    InitializationError,
    InvariantViolationError,
    NotFoundOrConflictError,
)
from .types import (
    DeleteRequest,
    GetRequest,
    GetResponse,
    SetRequest,
    encode_value,
    parse_etag,
    require_key,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Statement:
    """A validated mutation ready to execute."""

    key: str
    query: sql.Composed
    params: tuple


def check_single_row(rows_affected: int, key: str | None = None) -> None:
    """Verify that a keyed mutation touched exactly one row.

    Args:
        rows_affected: Row count reported by the backend
        key: Key the mutation targeted (for error context)

    Raises:
        NotFoundOrConflictError: If no row matched key and etag
        InvariantViolationError: If more than one row was affected
    """
    if rows_affected == 0:
        err = NotFoundOrConflictError(key=key)
        logger.error(err.message, extra={"key": key})
        raise err

    if rows_affected > 1:
        err = InvariantViolationError(key=key, rows_affected=rows_affected)
        logger.error(err.message, extra={"key": key, "rows_affected": rows_affected})
        raise err


def table_exists(conn: psycopg.Connection, table_name: str) -> bool:
    """Check pg_tables for a table with the given name."""
    row = conn.execute(
        "SELECT EXISTS (SELECT FROM pg_tables WHERE tablename = %s)",
        (table_name,),
    ).fetchone()
    return bool(row and row[0])


class PostgresDBAccess:
    """Key-value access to a PostgreSQL state table.

    The pool is created by init() and released by close(). It is shared by
    all calls; each single-key operation borrows one connection in
    autocommit mode, and execute_multi() wraps its statements in an explicit
    transaction on one borrowed connection.

    Thread safety:
        Safe to call from multiple threads. The pool hands each caller its
        own connection; concurrent writers are arbitrated by PostgreSQL row
        locks plus the ETag comparison.

    Example:
        >>> access = PostgresDBAccess()
        >>> access.init(PostgresConfig(connection_string="postgresql://localhost/state"))
        >>> access.set(SetRequest(key="a", value={"x": 1}))
        >>> resp = access.get(GetRequest(key="a"))
        >>> access.set(SetRequest(key="a", value={"x": 2}, etag=resp.etag))
        >>> access.close()
    """

    def __init__(self, config: PostgresConfig | None = None) -> None:
        self.config = config or PostgresConfig()
        self.pool: ConnectionPool | None = None
        logger.debug("PostgreSQL state store initializing")

    def __enter__(self) -> PostgresDBAccess:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def table_name(self) -> str:
        return self.config.table_name

    @property
    def is_initialized(self) -> bool:
        return self.pool is not None

    def init(self, config: PostgresConfig | None = None) -> None:
        """Open the pool, ping the backend and make sure the table exists.

        Args:
            config: Backend configuration (defaults to the one given at construction)

        Raises:
            InitializationError: If configuration is invalid, the backend is
                unreachable or the table cannot be created
        """
        if self.pool is not None:
            raise InitializationError("state store is already initialized")
        if config is not None:
            self.config = config

        try:
            self.config.validate()
        except InitializationError as e:
            logger.error(f"Invalid PostgreSQL configuration: {e}")
            raise

        pool = ConnectionPool(
            self.config.connection_string,
            min_size=self.config.pool_min_size,
            max_size=self.config.pool_max_size,
            timeout=self.config.pool_timeout_s,
            kwargs={"autocommit": True},
            name="pgstate",
            open=False,
        )
        try:
            pool.open(wait=True, timeout=self.config.pool_timeout_s)
            self.pool = pool
            self.ping()
            self.ensure_state_table()
        except (psycopg.Error, BackendError) as e:
            logger.error(f"PostgreSQL state store initialization failed: {e}")
            pool.close()
            self.pool = None
            raise InitializationError(f"failed to initialize PostgreSQL state store: {e}") from e

        logger.info(
            "PostgreSQL state store initialized",
            extra={"table_name": self.table_name, "pool_max_size": self.config.pool_max_size},
        )

    def close(self) -> None:
        """Release the pool. Safe to call more than once."""
        if self.pool is None:
            return
        self.pool.close()
        self.pool = None
        logger.info("PostgreSQL state store closed")

    @contextmanager
    def _connection(self, operation: str) -> Iterator[psycopg.Connection]:
        """Borrow a pooled connection, translating driver errors.

        Raises:
            BackendError: On any psycopg or pool failure
        """
        if self.pool is None:
            raise BackendError("state store is not initialized", operation=operation)
        try:
            with self.pool.connection() as conn:
                yield conn
        except psycopg.Error as e:
            logger.error(f"PostgreSQL {operation} failed: {e}")
            raise BackendError(str(e), operation=operation) from e

    def ping(self) -> None:
        """Run a trivial query to verify connectivity."""
        with self._connection("ping") as conn:
            conn.execute("SELECT 1")

    def ensure_state_table(self) -> None:
        """Create the state table if it does not exist yet."""
        with self._connection("bootstrap") as conn:
            if table_exists(conn, self.table_name):
                return
            conn.execute(
                sql.SQL(
                    """
                    CREATE TABLE IF NOT EXISTS {} (
                        key varchar(200) NOT NULL PRIMARY KEY,
                        value json NOT NULL,
                        insertdate TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                        updatedate TIMESTAMP WITH TIME ZONE NULL
                    )
                    """
                ).format(sql.Identifier(self.table_name))
            )
            logger.info(f"Created state table: {self.table_name}")

    def get(self, req: GetRequest) -> GetResponse:
        """Read a key.

        Returns:
            The stored document and its etag, or an empty GetResponse if the
            key does not exist

        Raises:
            InvalidArgumentError: If key is empty
            BackendError: On backend failure
        """
        logger.debug("Getting state value from PostgreSQL", extra={"key": req.key})
        require_key(req.key, "get")

        query = sql.SQL("SELECT value::text, xmin::text FROM {} WHERE key = %s").format(
            sql.Identifier(self.table_name)
        )
        with self._connection("get") as conn:
            row = conn.execute(query, (req.key,)).fetchone()

        if row is None:
            return GetResponse()

        value, etag = row
        return GetResponse(data=value.encode("utf-8"), etag=etag, metadata=req.metadata)

    def set(self, req: SetRequest) -> None:
        """Upsert a key, or update it conditionally when an etag is given.

        Raises:
            InvalidArgumentError: If key, etag or value is invalid
            NotFoundOrConflictError: If an etag was given and no row matched
            InvariantViolationError: If more than one row was affected
            BackendError: On backend failure
        """
        logger.debug("Setting state value in PostgreSQL", extra={"key": req.key})
        stmt = self._prepare_set(req)
        with self._connection("set") as conn:
            self._execute_single(conn, stmt)

    def delete(self, req: DeleteRequest) -> None:
        """Delete a key, conditionally when an etag is given.

        Deleting a key that does not exist is an error.

        Raises:
            InvalidArgumentError: If key or etag is invalid
            NotFoundOrConflictError: If no row matched key (and etag)
            InvariantViolationError: If more than one row was affected
            BackendError: On backend failure
        """
        logger.debug("Deleting state value from PostgreSQL", extra={"key": req.key})
        stmt = self._prepare_delete(req)
        with self._connection("delete") as conn:
            self._execute_single(conn, stmt)

    def execute_multi(
        self,
        deletes: Sequence[DeleteRequest] = (),
        sets: Sequence[SetRequest] = (),
    ) -> None:
        """Apply deletes, then sets, in one transaction.

        Each operation must affect exactly one row. The first failure rolls
        back the whole transaction and is re-raised unchanged.

        Args:
            deletes: Delete requests, applied first in order
            sets: Set requests, applied after all deletes in order
        """
        logger.debug(
            "Executing multiple PostgreSQL operations",
            extra={"deletes": len(deletes), "sets": len(sets)},
        )
        statements = [self._prepare_delete(d) for d in deletes]
        statements.extend(self._prepare_set(s) for s in sets)
        if not statements:
            return

        with self._connection("execute_multi") as conn:
            with conn.transaction():
                for stmt in statements:
                    self._execute_single(conn, stmt)

    def _prepare_set(self, req: SetRequest) -> _Statement:
        require_key(req.key, "set")
        etag = parse_etag(req.etag, key=req.key)
        value = encode_value(req.value, key=req.key)
        table = sql.Identifier(self.table_name)

        if etag is None:
            query = sql.SQL(
                """
                INSERT INTO {} (key, value) VALUES (%s, %s::json)
                ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updatedate = NOW()
                """
            ).format(table)
            return _Statement(req.key, query, (req.key, value))

        # An etag never inserts: a missing row is a conflict
        query = sql.SQL(
            """
            UPDATE {} SET value = %s::json, updatedate = NOW()
            WHERE key = %s AND xmin::text::bigint = %s
            """
        ).format(table)
        return _Statement(req.key, query, (value, req.key, etag))

    def _prepare_delete(self, req: DeleteRequest) -> _Statement:
        require_key(req.key, "delete")
        etag = parse_etag(req.etag, key=req.key)
        table = sql.Identifier(self.table_name)

        if etag is None:
            query = sql.SQL("DELETE FROM {} WHERE key = %s").format(table)
            return _Statement(req.key, query, (req.key,))

        query = sql.SQL("DELETE FROM {} WHERE key = %s AND xmin::text::bigint = %s").format(table)
        return _Statement(req.key, query, (req.key, etag))

    def _execute_single(self, conn: psycopg.Connection, stmt: _Statement) -> None:
        cursor = conn.execute(stmt.query, stmt.params)
        check_single_row(cursor.rowcount, key=stmt.key)
