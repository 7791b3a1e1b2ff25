"""
Integration tests against a live PostgreSQL.

Tests cover:
- Table bootstrap
- Round trips and unconditional upserts
- ETag-guarded updates and deletes
- Batch atomicity and ordering
- Racing conditional writers
"""

import threading

import psycopg
import pytest
from psycopg import sql

from components.pgstate.config import PostgresConfig
from components.pgstate.errors import InitializationError, NotFoundOrConflictError
from components.pgstate.state import (
    DeleteRequest,
    GetRequest,
    OperationType,
    PostgresDBAccess,
    SetRequest,
    TransactionalStateOperation,
    TransactionalStateRequest,
)
from components.pgstate.state.dbaccess import table_exists

from .conftest import CONNECTION_STRING

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not CONNECTION_STRING,
        reason="Integration tests disabled. Set PGSTATE_TEST_CONNECTION_STRING to enable.",
    ),
]


def get(access, key):
    return access.get(GetRequest(key=key))


class TestBootstrap:
    """Tests for state table bootstrap."""

    def test_init_creates_table(self, access, table_name):
        with psycopg.connect(CONNECTION_STRING) as conn:
            assert table_exists(conn, table_name)

    def test_init_is_repeatable(self, access, config):
        """A second instance finds the existing table."""
        other = PostgresDBAccess(config)
        other.init()
        other.close()

    def test_init_unreachable_backend(self, config):
        bad = PostgresDBAccess(
            PostgresConfig(
                connection_string="postgresql://nobody@127.0.0.1:1/none",
                table_name=config.table_name,
                pool_timeout_s=1,
            )
        )
        with pytest.raises(InitializationError):
            bad.init()


class TestSingleKey:
    """Tests for Get/Set/Delete."""

    def test_set_then_get(self, access):
        access.set(SetRequest(key="a", value={"x": 1}))

        resp = get(access, "a")

        assert resp.json() == {"x": 1}
        assert resp.etag

    def test_get_never_set(self, access):
        resp = get(access, "never-set")
        assert not resp.found
        assert resp.etag is None

    @pytest.mark.parametrize(
        "payload",
        [{"nested": {"list": [1, 2.5, "three", None, True]}}, [], "text", 0, None],
    )
    def test_round_trip(self, access, payload):
        access.set(SetRequest(key="k", value=payload))
        assert get(access, "k").json() == payload

    def test_conditional_update_and_stale_etag(self, access):
        access.set(SetRequest(key="a", value={"x": 1}))
        t1 = get(access, "a").etag

        access.set(SetRequest(key="a", value={"x": 2}, etag=t1))
        t2 = get(access, "a").etag
        assert t2 != t1

        with pytest.raises(NotFoundOrConflictError):
            access.set(SetRequest(key="a", value={"x": 3}, etag=t1))

        resp = get(access, "a")
        assert resp.json() == {"x": 2}
        assert resp.etag == t2

    def test_unconditional_upsert_changes_etag(self, access):
        access.set(SetRequest(key="a", value=1))
        t1 = get(access, "a").etag

        access.set(SetRequest(key="a", value=2))

        resp = get(access, "a")
        assert resp.json() == 2
        assert resp.etag != t1

    def test_set_with_etag_never_inserts(self, access):
        with pytest.raises(NotFoundOrConflictError):
            access.set(SetRequest(key="ghost", value=1, etag="1"))
        assert not get(access, "ghost").found

    def test_delete_missing_key(self, access):
        with pytest.raises(NotFoundOrConflictError):
            access.delete(DeleteRequest(key="missing-key"))

    def test_delete_with_stale_etag_keeps_row(self, access):
        access.set(SetRequest(key="a", value=1))
        t1 = get(access, "a").etag
        access.set(SetRequest(key="a", value=2))

        with pytest.raises(NotFoundOrConflictError):
            access.delete(DeleteRequest(key="a", etag=t1))

        assert get(access, "a").json() == 2

    def test_delete_with_current_etag(self, access):
        access.set(SetRequest(key="a", value=1))

        access.delete(DeleteRequest(key="a", etag=get(access, "a").etag))

        assert not get(access, "a").found

    def test_delete_then_set_changes_etag(self, access):
        access.set(SetRequest(key="a", value=1))
        t1 = get(access, "a").etag

        access.delete(DeleteRequest(key="a"))
        access.set(SetRequest(key="a", value=1))

        assert get(access, "a").etag != t1


class TestBatches:
    """Tests for execute_multi and PostgreSQLStore.multi."""

    def test_failed_batch_leaves_no_trace(self, access):
        access.set(SetRequest(key="a", value={"x": 1}))
        stale = get(access, "a").etag
        access.set(SetRequest(key="a", value={"x": 2}))
        before = get(access, "a")

        with pytest.raises(NotFoundOrConflictError):
            access.execute_multi(
                deletes=[DeleteRequest(key="a", etag=stale)],
                sets=[SetRequest(key="b", value={"y": 1})],
            )

        after = get(access, "a")
        assert after.json() == before.json()
        assert after.etag == before.etag
        assert not get(access, "b").found

    def test_failure_in_sets_undoes_deletes(self, access):
        access.set(SetRequest(key="a", value=1))

        with pytest.raises(NotFoundOrConflictError):
            access.execute_multi(
                deletes=[DeleteRequest(key="a")],
                sets=[SetRequest(key="c", value=1), SetRequest(key="ghost", value=1, etag="1")],
            )

        assert get(access, "a").json() == 1
        assert not get(access, "c").found

    def test_delete_and_recreate_same_key(self, access):
        access.set(SetRequest(key="a", value="old"))
        etag = get(access, "a").etag

        access.execute_multi(
            deletes=[DeleteRequest(key="a", etag=etag)],
            sets=[SetRequest(key="a", value="new")],
        )

        resp = get(access, "a")
        assert resp.json() == "new"
        assert resp.etag != etag

    def test_store_multi(self, store):
        store.set(SetRequest(key="a", value=1))

        store.multi(
            TransactionalStateRequest(
                operations=[
                    TransactionalStateOperation(OperationType.UPSERT, SetRequest(key="b", value=2)),
                    TransactionalStateOperation(OperationType.DELETE, DeleteRequest(key="a")),
                ]
            )
        )

        assert not store.get(GetRequest(key="a")).found
        assert store.get(GetRequest(key="b")).json() == 2


class TestConcurrency:
    """Racing writers against the same row."""

    def test_only_one_conditional_writer_wins(self, access):
        access.set(SetRequest(key="counter", value=0))
        etag = get(access, "counter").etag

        results: list[str] = []
        barrier = threading.Barrier(4)

        def writer(n: int) -> None:
            barrier.wait()
            try:
                access.set(SetRequest(key="counter", value=n, etag=etag))
                results.append("ok")
            except NotFoundOrConflictError:
                results.append("conflict")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(1, 5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("ok") == 1
        assert results.count("conflict") == 3

    def test_unconditional_writers_keep_one_row(self, access):
        def writer(n: int) -> None:
            for i in range(10):
                access.set(SetRequest(key="shared", value={"writer": n, "i": i}))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        with psycopg.connect(CONNECTION_STRING) as conn:
            count = conn.execute(
                sql.SQL("SELECT count(*) FROM {} WHERE key = %s").format(
                    sql.Identifier(access.table_name)
                ),
                ("shared",),
            ).fetchone()[0]
        assert count == 1
