"""
Shared test doubles. None of these need a network or a database server.
"""

import sqlite3
import threading
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import redis

from multidb_sql.core.config import BackendSettings
from multidb_sql.core.models import BackendType, SchemaDescriptor
from multidb_sql.core.registry import BackendRegistry
from multidb_sql.data.connection_manager import BackendConnection


USERS_SCHEMA = SchemaDescriptor(
    backend_type=BackendType.POSTGRES,
    rendered_text="Table users {\n  id integer NOT NULL\n  name text\n  email text\n  status text\n}",
    tables=("users",),
)


class SqliteCursor:
    """Cursor shaped like psycopg2's, running on sqlite3."""

    def __init__(self, conn: sqlite3.Connection, as_dicts: bool):
        self._cursor = conn.cursor()
        self._as_dicts = as_dicts
        self.rowcount = -1

    def execute(self, sql, params=None):
        self._cursor.execute(sql, params or ())

    def fetchall(self):
        rows = self._cursor.fetchall()
        self.rowcount = len(rows)
        if not self._as_dicts:
            return rows
        columns = [desc[0] for desc in self._cursor.description]
        return [dict(zip(columns, row)) for row in rows]

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self._cursor.close()


class SqliteConnection:
    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return SqliteCursor(self._conn, as_dicts=cursor_factory is not None)

    def rollback(self):
        self.rollbacks += 1
        self._conn.rollback()


class SqlitePool:
    """Stands in for psycopg2's ThreadedConnectionPool."""

    def __init__(self, conn: sqlite3.Connection):
        self.connection = SqliteConnection(conn)
        self.borrowed = 0
        self.closed = False

    def getconn(self):
        self.borrowed += 1
        return self.connection

    def putconn(self, conn):
        self.borrowed -= 1

    def closeall(self):
        self.closed = True


class FakeRedis:
    """Dict-backed Redis with SET EX expiry driven by a manual clock."""

    def __init__(self):
        self.now = 0.0
        self.store = {}
        self.closed = False

    def ping(self):
        return True

    def get(self, key):
        entry = self.store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.now >= expires_at:
            del self.store[key]
            return None
        return value

    def set(self, key, value, ex=None):
        self.store[key] = (value, self.now + ex if ex else None)
        return True

    def close(self):
        self.closed = True


class DownRedis:
    """Every command fails the way an unreachable server does."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise redis.ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")
        return fail


class FakeMistralClient:
    """Exposes ``chat.complete`` and records every call."""

    def __init__(self, content="SELECT 1", error=None):
        self.content = content
        self.error = error
        self.calls = []
        self.chat = SimpleNamespace(complete=self._complete)

    def _complete(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    @property
    def last_prompt(self):
        return self.calls[-1]["messages"][-1]["content"]


@pytest.fixture
def users_db():
    conn = sqlite3.connect(":memory:", check_same_thread=False)
    conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, email TEXT, status TEXT)")
    conn.executemany(
        "INSERT INTO users (id, name, email, status) VALUES (?, ?, ?, ?)",
        [
            (1, "Ann", "ann@example.com", "active"),
            (2, "Bob", "bob@example.com", "inactive"),
        ],
    )
    conn.commit()
    yield conn
    conn.close()


@pytest.fixture
def postgres_connection(users_db):
    return BackendConnection(BackendType.POSTGRES, SqlitePool(users_db))


def make_registry(connections, schemas=None, failing=None):
    """
    Build a BackendRegistry over prepared connections.

    Args:
        connections: BackendType -> BackendConnection
        schemas: BackendType -> SchemaDescriptor (defaults to an empty schema)
        failing: BackendType -> exception raised by connect
    """
    schemas = schemas or {}
    failing = failing or {}

    manager = MagicMock()

    def connect(backend_type, settings):
        if backend_type in failing:
            raise failing[backend_type]
        return connections[backend_type]

    def close(connection):
        connection.connected = False

    manager.connect.side_effect = connect
    manager.close.side_effect = close

    loader = MagicMock()
    loader.fetch_schema.side_effect = lambda c: schemas.get(
        c.backend_type, SchemaDescriptor(backend_type=c.backend_type, rendered_text="")
    )

    registry = BackendRegistry(connection_manager=manager, schema_loader=loader)
    backends = {b: BackendSettings() for b in list(connections) + list(failing)}
    registry.initialize(backends)
    return registry


def locked_connection(backend_type, handle, **kwargs):
    return BackendConnection(backend_type, handle, lock=threading.Lock(), **kwargs)
