import psycopg2
import pytest

from rollguard.config import DBConfig
from rollguard.exceptions import DataPersistenceError
from rollguard.persistence.postgres import AUDIT_CHAIN_LOCK_KEY, PostgresRollStore


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        statement = " ".join(sql.split())
        self.conn.statements.append((statement, self.conn.autocommit))
        self.conn.params.append(params)
        if self.conn.fail_on and self.conn.fail_on in statement:
            raise psycopg2.OperationalError("server closed the connection unexpectedly")

    def fetchone(self):
        return None

    def fetchall(self):
        return []


class FakeConnection:
    """Records each statement with the autocommit mode it ran under."""

    def __init__(self, fail_on=None):
        self.autocommit = True
        self.statements = []
        self.params = []
        self.commits = 0
        self.rollbacks = 0
        self.fail_on = fail_on

    def cursor(self, cursor_factory=None):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakePool:
    def __init__(self, conn):
        self.conn = conn
        self.returned = []

    def getconn(self):
        return self.conn

    def putconn(self, conn, close=False):
        self.returned.append(close)


@pytest.fixture
def pg_store(monkeypatch):
    def _make(conn):
        store = PostgresRollStore(DBConfig(host="db", name="rolls", user="rollguard", pool_min=1, pool_max=2))
        pool = FakePool(conn)
        monkeypatch.setattr(store, "_get_pool", lambda: pool)
        return store, pool

    return _make


def sql_of(conn):
    return [statement for statement, _ in conn.statements]


def test_snapshot_transaction_locks_chain_before_snapshot(pg_store):
    conn = FakeConnection()
    store, pool = pg_store(conn)

    with store.transaction(snapshot=True):
        store.last_audit_entry(lock=True)

    statements = sql_of(conn)
    assert statements[0] == "SELECT pg_advisory_lock(%s)"
    assert conn.statements[0][1] is True
    assert conn.params[0] == (AUDIT_CHAIN_LOCK_KEY,)
    assert statements[1] == "SET TRANSACTION ISOLATION LEVEL REPEATABLE READ"
    assert conn.statements[1][1] is False
    head_read = statements.index("SELECT * FROM audit_log ORDER BY recorded_at DESC, sequence DESC LIMIT 1")
    assert head_read > 1
    assert statements[-1] == "SELECT pg_advisory_unlock(%s)"
    assert conn.commits == 1
    assert pool.returned == [False]


def test_plain_transaction_takes_no_session_lock(pg_store):
    conn = FakeConnection()
    store, pool = pg_store(conn)

    with store.transaction():
        store.last_audit_entry(lock=True)

    statements = sql_of(conn)
    assert statements[0] == "SELECT pg_advisory_xact_lock(%s)"
    assert "SELECT pg_advisory_lock(%s)" not in statements
    assert "SELECT pg_advisory_unlock(%s)" not in statements
    assert all(autocommit is False for _, autocommit in conn.statements)


def test_snapshot_lock_released_when_block_fails(pg_store):
    conn = FakeConnection()
    store, pool = pg_store(conn)

    with pytest.raises(ValueError):
        with store.transaction(snapshot=True):
            raise ValueError("abort")

    assert sql_of(conn)[-1] == "SELECT pg_advisory_unlock(%s)"
    assert conn.rollbacks == 1
    assert conn.commits == 0
    assert pool.returned == [False]


def test_connection_closed_when_unlock_fails(pg_store):
    conn = FakeConnection(fail_on="pg_advisory_unlock")
    store, pool = pg_store(conn)

    with store.transaction(snapshot=True):
        pass

    assert pool.returned == [True]


def test_database_error_becomes_persistence_error(pg_store):
    conn = FakeConnection(fail_on="FROM audit_log")
    store, pool = pg_store(conn)

    with pytest.raises(DataPersistenceError):
        with store.transaction(snapshot=True):
            store.last_audit_entry()

    assert conn.rollbacks == 1
    assert sql_of(conn)[-1] == "SELECT pg_advisory_unlock(%s)"
