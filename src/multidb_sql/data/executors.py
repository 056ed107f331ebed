"""
Execution of generated queries against connected backends.
One executor per backend type; results are normalized into QueryResult.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from bson import ObjectId
from psycopg2.extras import RealDictCursor

from ..core.errors import ExecutionError
from ..core.models import BackendType, QueryResult, ensure_complete
from ..security.document_commands import UnsafeCommandError, parse_document_command
from ..security.security import SecurityConfig

logger = logging.getLogger(__name__)


class QueryExecutor(ABC):
    """Runs query text against one kind of backend handle."""

    @abstractmethod
    def run(self, connection, query_text: str) -> QueryResult:
        """Execute the query and return normalized rows."""


class PostgresExecutor(QueryExecutor):
    """Borrows a pooled connection, waiting for a free one when all are in use."""

    def run(self, connection, query_text: str) -> QueryResult:
        with connection.borrowed() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(query_text)
                rows = [dict(row) for row in cursor.fetchall()]
                row_count = cursor.rowcount
        return QueryResult(rows=rows, metadata={"row_count": row_count})


class MySQLExecutor(QueryExecutor):
    """Runs on the single shared connection; callers hold its lock."""

    def run(self, connection, query_text: str) -> QueryResult:
        conn = connection.handle
        conn.ping(reconnect=True)
        with conn.cursor() as cursor:
            cursor.execute(query_text)
            rows = [dict(row) for row in cursor.fetchall()]
            row_count = cursor.rowcount
        return QueryResult(rows=rows, metadata={"row_count": row_count})


class OracleExecutor(QueryExecutor):
    """Runs on the single shared connection; callers hold its lock."""

    def run(self, connection, query_text: str) -> QueryResult:
        conn = connection.handle
        try:
            with conn.cursor() as cursor:
                cursor.execute(query_text)
                columns = [desc[0] for desc in cursor.description or []]
                rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
                row_count = cursor.rowcount
        finally:
            # Ends the transaction, releasing any row locks (SELECT ... FOR UPDATE)
            conn.rollback()
        return QueryResult(rows=rows, metadata={"row_count": row_count, "columns": columns})


class DocumentExecutor(QueryExecutor):
    """
    Runs allowlisted document commands.

    The command text is parsed into a DocumentCommand and mapped onto the
    driver's find / aggregate / count_documents calls. It is never evaluated.
    """

    def __init__(self, max_limit: int = 1000):
        self.max_limit = max_limit

    def run(self, connection, query_text: str) -> QueryResult:
        command = parse_document_command(query_text, max_limit=self.max_limit)
        collection = connection.database[command.collection]
        max_time_ms = _max_time_ms(connection)

        if command.operation == "find":
            options: Dict[str, Any] = {}
            if command.sort:
                options["sort"] = command.sort
            if command.skip:
                options["skip"] = command.skip
            if command.limit:
                options["limit"] = command.limit
            if max_time_ms:
                options["max_time_ms"] = max_time_ms
            documents = list(collection.find(command.filter, command.projection, **options))
        elif command.operation == "aggregate":
            options = {"maxTimeMS": max_time_ms} if max_time_ms else {}
            documents = list(collection.aggregate(command.pipeline, **options))
        else:
            options = {"maxTimeMS": max_time_ms} if max_time_ms else {}
            documents = [{"count": collection.count_documents(command.filter, **options)}]

        rows = [_normalize(doc) for doc in documents]
        return QueryResult(rows=rows, metadata={"row_count": len(rows)})


def _max_time_ms(connection) -> Optional[int]:
    settings = connection.settings
    return int(settings.query_timeout * 1000) if settings and settings.query_timeout else None


def _normalize(value: Any) -> Any:
    """Convert ObjectId values so documents serialize like relational rows."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: _normalize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_normalize(item) for item in value]
    return value


class ExecutionDispatcher:
    """Selects the executor for a connection's backend type and runs the query."""

    def __init__(self, security_config: Optional[SecurityConfig] = None):
        config = security_config or SecurityConfig()
        self._executors = ensure_complete({
            BackendType.POSTGRES: PostgresExecutor(),
            BackendType.MYSQL: MySQLExecutor(),
            BackendType.MONGODB: DocumentExecutor(max_limit=config.max_document_limit),
            BackendType.ORACLE: OracleExecutor(),
        }, "executor")

    def execute(self, connection, query_text: str) -> QueryResult:
        """
        Execute a generated query against its backend.

        Args:
            connection: Connected BackendConnection
            query_text: Query produced by the generator

        Returns:
            QueryResult

        Raises:
            ExecutionError: if the backend rejects or fails the query
        """
        if connection is None or not connection.connected:
            backend_type = getattr(connection, "backend_type", None)
            raise ExecutionError("Connection is not available", backend_type=backend_type)

        backend_type = connection.backend_type
        executor = self._executors[backend_type]
        try:
            with connection.serialized():
                result = executor.run(connection, query_text)
        except UnsafeCommandError as e:
            logger.error(f"Rejected {backend_type.value} command: {e}")
            raise ExecutionError("Command rejected", backend_type=backend_type, cause=e) from e
        except Exception as e:
            logger.error(f"Query execution failed for {backend_type.value}: {e}")
            raise ExecutionError("Query execution failed", backend_type=backend_type, cause=e) from e

        logger.info(f"Query executed on {backend_type.value}, returned {len(result.rows)} rows")
        return result
