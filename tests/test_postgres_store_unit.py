from contextlib import contextmanager
from datetime import datetime

import pytest
from psycopg import errors

from janeproxy.storage.errors import ConstraintViolation
from janeproxy.storage.postgres import PostgresStore


class FakeCursor:
    def __init__(self, rows):
        self._rows = rows

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)


class FakeConnection:
    def __init__(self, results=None, error=None):
        self.statements = []
        self.results = list(results or [])
        self.error = error
        self.transactions = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    @contextmanager
    def transaction(self):
        self.transactions += 1
        yield

    def execute(self, sql, params=None):
        self.statements.append((" ".join(sql.split()), params))
        if self.error:
            raise self.error
        return FakeCursor(self.results.pop(0) if self.results else [])


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    def connection(self):
        return self.conn


def _store(conn) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.pool = FakePool(conn)
    store.dsn = "postgresql://test"
    return store


def test_get_or_create_takes_advisory_lock_and_inserts():
    conn = FakeConnection(results=[[], []])
    store = _store(conn)

    conversation, created = store.get_or_create_active_conversation("u1", "General")

    assert created is True
    assert conn.transactions == 1
    sql = [statement for statement, _ in conn.statements]
    assert sql[0].startswith("SELECT pg_advisory_xact_lock(hashtext(%s))")
    assert conn.statements[0][1] == ("u1",)
    assert sql[2].startswith("INSERT INTO conversation")
    assert conn.statements[2][1][:3] == (conversation.id, "u1", "General")


def test_get_or_create_returns_existing_row():
    existing = {"id": "c1", "user_id": "u1", "title": "General", "created_at": datetime(2024, 1, 1)}
    conn = FakeConnection(results=[[], [existing]])
    store = _store(conn)

    conversation, created = store.get_or_create_active_conversation("u1", "General")

    assert created is False
    assert conversation.id == "c1"
    assert not any(s.startswith("INSERT") for s, _ in conn.statements)


def test_append_to_missing_conversation_maps_foreign_key_violation():
    store = _store(FakeConnection(error=errors.ForeignKeyViolation("fk")))
    with pytest.raises(ConstraintViolation):
        store.append_message("missing", "user", "hi")


def test_list_messages_orders_by_time_then_insertion():
    row = {
        "id": "m1",
        "conversation_id": "c1",
        "role": "user",
        "content": "hi",
        "created_at": datetime(2024, 1, 1),
    }
    conn = FakeConnection(results=[[row]])
    messages = _store(conn).list_messages("c1")

    assert [m.content for m in messages] == ["hi"]
    assert conn.statements[0][0].endswith("ORDER BY created_at ASC, seq ASC")


def test_license_upsert_and_read():
    conn = FakeConnection(
        results=[
            [],
            [
                {
                    "user_id": "u1",
                    "status": "active",
                    "current_period_end": 5000,
                    "product": "price_1",
                    "updated_at": datetime(2024, 1, 1),
                }
            ],
        ]
    )
    store = _store(conn)

    store.upsert_license("u1", "active", 5000, "price_1")
    record = store.get_license("u1")

    assert "ON CONFLICT (user_id) DO UPDATE" in conn.statements[0][0]
    assert record.active
    assert record.current_period_end == 5000
