"""
PostgresTreeStore.transaction() error mapping, over a stand-in connection
(no database needed).
"""

import pytest
from psycopg.errors import DeadlockDetected, SerializationFailure

from db.tree_store_db import PostgresTreeStore
from errors import TransactionConflict


class _Conn:
    def __init__(self, fail_commit_with=None):
        self.commits = 0
        self.rollbacks = 0
        self.fail_commit_with = fail_commit_with

    def commit(self):
        if self.fail_commit_with is not None:
            raise self.fail_commit_with
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


@pytest.mark.parametrize("error_cls", [DeadlockDetected, SerializationFailure])
def test_lock_conflict_in_body_becomes_retryable(error_cls):
    conn = _Conn()
    store = PostgresTreeStore(conn)

    with pytest.raises(TransactionConflict) as exc:
        with store.transaction():
            raise error_cls("deadlock detected")

    assert exc.value.retryable
    assert isinstance(exc.value.__cause__, error_cls)
    assert (conn.commits, conn.rollbacks) == (0, 1)


def test_serialization_failure_at_commit_becomes_retryable():
    conn = _Conn(fail_commit_with=SerializationFailure("could not serialize access"))
    store = PostgresTreeStore(conn)

    with pytest.raises(TransactionConflict):
        with store.transaction():
            pass

    assert conn.rollbacks == 1


def test_other_errors_pass_through_after_rollback():
    conn = _Conn()
    store = PostgresTreeStore(conn)

    with pytest.raises(RuntimeError):
        with store.transaction():
            raise RuntimeError("boom")

    assert (conn.commits, conn.rollbacks) == (0, 1)


def test_clean_transaction_commits():
    conn = _Conn()
    with PostgresTreeStore(conn).transaction():
        pass
    assert (conn.commits, conn.rollbacks) == (1, 0)
