"""
Fakes for the psycopg pool used by unit tests.

FakeConnection returns scripted results in order: a FakeCursor, or an
exception to raise from execute().
"""

from __future__ import annotations

from contextlib import contextmanager

import pytest

from components.pgstate.config import PostgresConfig
from components.pgstate.state.dbaccess import PostgresDBAccess


class FakeCursor:
    def __init__(self, rowcount: int = 1, row: tuple | None = None) -> None:
        self.rowcount = rowcount
        self.row = row

    def fetchone(self):
        return self.row


class FakeConnection:
    def __init__(self) -> None:
        self.executed: list[tuple] = []
        self.results: list = []
        self.events: list[str] = []

    def script(self, *results) -> None:
        self.results.extend(results)

    def execute(self, query, params=None):
        self.executed.append((query, params))
        result = self.results.pop(0) if self.results else FakeCursor()
        if isinstance(result, Exception):
            raise result
        return result

    @contextmanager
    def transaction(self):
        self.events.append("begin")
        try:
            yield
        except BaseException:
            self.events.append("rollback")
            raise
        self.events.append("commit")


class FakePool:
    def __init__(self, conn: FakeConnection) -> None:
        self.conn = conn
        self.opened = False
        self.closed = 0
        self.borrowed = 0

    def open(self, wait: bool = False, timeout: float = 30.0) -> None:
        self.opened = True

    @contextmanager
    def connection(self):
        self.borrowed += 1
        yield self.conn

    def close(self) -> None:
        self.closed += 1


@pytest.fixture
def config():
    return PostgresConfig(connection_string="postgresql://localhost/test")


@pytest.fixture
def conn():
    return FakeConnection()


@pytest.fixture
def pool(conn):
    return FakePool(conn)


@pytest.fixture
def access(config, pool):
    """PostgresDBAccess wired to the fake pool."""
    access = PostgresDBAccess(config)
    access.pool = pool
    return access
