"""
Connection lifecycle for the supported database backends.
Opens one long-lived handle per backend, probes it, and releases it at shutdown.
"""

import logging
import threading
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from typing import Any, Optional

import oracledb
import psycopg2
import psycopg2.pool
import pymysql
import pymysql.cursors
from pymongo import MongoClient

from ..core.config import BackendSettings
from ..core.errors import BackendConnectionError
from ..core.models import BackendType, ensure_complete

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = ensure_complete({
    BackendType.POSTGRES: ("host", "user", "database"),
    BackendType.MYSQL: ("host", "user", "database"),
    BackendType.MONGODB: ("url", "database"),
    BackendType.ORACLE: ("user", "password", "connect_string"),
}, "required settings")


@dataclass
class BackendConnection:
    """
    A live handle to one backend.

    ``handle`` is the driver object (pool, connection or client). ``database``
    is set for the document store. Non-pooled drivers carry a lock so that
    concurrent requests use the shared handle one at a time. Pooled drivers
    carry a semaphore sized to the pool so that borrowers wait for a free
    connection instead of exhausting the pool.
    """
    backend_type: BackendType
    handle: Any
    connected: bool = True
    database: Any = None
    lock: Optional[threading.Lock] = field(default=None, repr=False)
    settings: Optional[BackendSettings] = field(default=None, repr=False)
    slots: Optional[threading.BoundedSemaphore] = field(default=None, repr=False)

    def serialized(self):
        """Context manager guarding handle use for non-pooled drivers."""
        return self.lock if self.lock is not None else nullcontext()

    @contextmanager
    def borrowed(self):
        """
        Borrow a connection from a pooled handle.

        The connection's transaction is rolled back before it goes back to the
        pool, so nothing a query started outlives the request.
        """
        with self.slots if self.slots is not None else nullcontext():
            pool = self.handle
            conn = pool.getconn()
            try:
                yield conn
            finally:
                try:
                    conn.rollback()
                finally:
                    pool.putconn(conn)


class ConnectionManager:
    """Opens, probes and closes backend connections."""

    def __init__(self):
        self._openers = ensure_complete({
            BackendType.POSTGRES: self._connect_postgres,
            BackendType.MYSQL: self._connect_mysql,
            BackendType.MONGODB: self._connect_mongo,
            BackendType.ORACLE: self._connect_oracle,
        }, "connector")
        self._closers = ensure_complete({
            BackendType.POSTGRES: lambda c: c.handle.closeall(),
            BackendType.MYSQL: lambda c: c.handle.close(),
            BackendType.MONGODB: lambda c: c.handle.close(),
            BackendType.ORACLE: lambda c: c.handle.close(),
        }, "closer")

    def connect(self, backend_type: BackendType, settings: BackendSettings) -> BackendConnection:
        """
        Open and probe a connection for one backend.

        Args:
            backend_type: Backend to connect
            settings: Connection parameters

        Returns:
            BackendConnection with ``connected`` set

        Raises:
            BackendConnectionError: if parameters are missing or the probe fails
        """
        missing = [name for name in REQUIRED_SETTINGS[backend_type] if not getattr(settings, name)]
        if missing:
            raise BackendConnectionError(
                f"Missing connection parameters: {', '.join(missing)}",
                backend_type=backend_type
            )

        try:
            connection = self._openers[backend_type](settings)
        except Exception as e:
            logger.error(f"{backend_type.value} connection failed: {e}")
            raise BackendConnectionError("Connection failed", backend_type=backend_type, cause=e) from e

        connection.settings = settings
        logger.info(f"{backend_type.value} connection established")
        return connection

    def close(self, connection: BackendConnection):
        """
        Release a connection handle. Closing twice is a no-op.

        Raises:
            BackendConnectionError: if the driver fails to close the handle
        """
        if not connection.connected:
            return
        connection.connected = False
        try:
            self._closers[connection.backend_type](connection)
            logger.info(f"Closed {connection.backend_type.value} connection")
        except Exception as e:
            raise BackendConnectionError(
                "Failed to close connection",
                backend_type=connection.backend_type,
                cause=e
            ) from e

    def _connect_postgres(self, settings: BackendSettings) -> BackendConnection:
        statement_timeout = int(settings.query_timeout * 1000)
        pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=1,
            maxconn=settings.pool_size,
            host=settings.host,
            port=settings.port,
            user=settings.user,
            password=settings.password,
            dbname=settings.database,
            connect_timeout=settings.connect_timeout,
            options=f"-c default_transaction_read_only=on -c statement_timeout={statement_timeout}",
        )
        with _closing_on_error(pool.closeall):
            conn = pool.getconn()
            try:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT 1")
                    cursor.fetchone()
                conn.rollback()
            finally:
                pool.putconn(conn)
        return BackendConnection(
            BackendType.POSTGRES,
            pool,
            slots=threading.BoundedSemaphore(settings.pool_size)
        )

    def _connect_mysql(self, settings: BackendSettings) -> BackendConnection:
        timeout = max(1, int(settings.query_timeout))
        conn = pymysql.connect(
            host=settings.host,
            port=settings.port or 3306,
            user=settings.user,
            password=settings.password or "",
            database=settings.database,
            cursorclass=pymysql.cursors.DictCursor,
            connect_timeout=settings.connect_timeout,
            read_timeout=timeout,
            write_timeout=timeout,
            autocommit=True,
        )
        with _closing_on_error(conn.close):
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
        return BackendConnection(BackendType.MYSQL, conn, lock=threading.Lock())

    def _connect_mongo(self, settings: BackendSettings) -> BackendConnection:
        timeout_ms = settings.connect_timeout * 1000
        client = MongoClient(
            settings.url,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
        )
        with _closing_on_error(client.close):
            client.admin.command("ping")
        return BackendConnection(BackendType.MONGODB, client, database=client[settings.database])

    def _connect_oracle(self, settings: BackendSettings) -> BackendConnection:
        conn = oracledb.connect(
            user=settings.user,
            password=settings.password,
            dsn=settings.connect_string,
        )
        with _closing_on_error(conn.close):
            conn.call_timeout = int(settings.query_timeout * 1000)
            with conn.cursor() as cursor:
                cursor.execute("SELECT 1 FROM DUAL")
                cursor.fetchone()
        return BackendConnection(BackendType.ORACLE, conn, lock=threading.Lock())


@contextmanager
def _closing_on_error(close):
    """Release a freshly opened handle when its liveness probe fails."""
    try:
        yield
    except Exception:
        try:
            close()
        except Exception as e:
            logger.debug(f"Ignoring close failure after probe error: {e}")
        raise
