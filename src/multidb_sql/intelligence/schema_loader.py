"""
Schema introspection for connected backends.
Reads structural metadata from each backend's catalog and renders the grounding
schema text handed to the query generator. Row data is never read.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Sequence, Set

from ..core.errors import SchemaFetchError
from ..core.models import BackendType, SchemaDescriptor, ensure_complete

logger = logging.getLogger(__name__)

POSTGRES_CATALOG_QUERY = """
    SELECT table_name, column_name, data_type, is_nullable
    FROM information_schema.columns
    WHERE table_schema = %s
    ORDER BY table_name, ordinal_position
"""

MYSQL_CATALOG_QUERY = """
    SELECT
        TABLE_NAME AS table_name,
        COLUMN_NAME AS column_name,
        DATA_TYPE AS data_type,
        IS_NULLABLE AS is_nullable
    FROM INFORMATION_SCHEMA.COLUMNS
    WHERE TABLE_SCHEMA = DATABASE()
    ORDER BY TABLE_NAME, ORDINAL_POSITION
"""

ORACLE_CATALOG_QUERY = """
    SELECT table_name, column_name, data_type, nullable, data_length
    FROM user_tab_columns
    ORDER BY table_name, column_id
"""


@dataclass
class TableSchema:
    """Represents a table schema."""
    name: str
    columns: List[str] = field(default_factory=list)
    column_types: Dict[str, str] = field(default_factory=dict)
    not_null: Set[str] = field(default_factory=set)

    def render(self) -> str:
        lines = []
        for col in self.columns:
            line = f"  {col} {self.column_types.get(col, 'unknown')}"
            if col in self.not_null:
                line += " NOT NULL"
            lines.append(line)
        return f"Table {self.name} {{\n" + "\n".join(lines) + "\n}"


def group_catalog_rows(rows: Iterable[Sequence[Any]]) -> List[TableSchema]:
    """
    Group (table, column, type, nullable[, length]) tuples by table.

    Tables keep the order in which the catalog first returns them, and columns
    keep catalog order within each table.
    """
    tables: Dict[str, TableSchema] = {}
    for row in rows:
        table_name, column_name, data_type, nullable = row[0], row[1], row[2], row[3]
        length = row[4] if len(row) > 4 else None

        table = tables.get(table_name)
        if table is None:
            table = tables[table_name] = TableSchema(name=table_name)

        col_type = str(data_type)
        if length is not None:
            col_type = f"{col_type}({length})"

        table.columns.append(column_name)
        table.column_types[column_name] = col_type
        if str(nullable).upper() in ("NO", "N"):
            table.not_null.add(column_name)
    return list(tables.values())


def render_tables(tables: List[TableSchema]) -> str:
    return "\n\n".join(table.render() for table in tables)


def render_collections(names: Iterable[str]) -> str:
    return "\n\n".join(
        f"Collection {name} {{\n  // Schema is dynamic\n}}" for name in names
    )


class SchemaLoader:
    """Fetches and renders the grounding schema for a connected backend."""

    def __init__(self):
        self._loaders = ensure_complete({
            BackendType.POSTGRES: self._load_postgres,
            BackendType.MYSQL: self._load_mysql,
            BackendType.MONGODB: self._load_mongo,
            BackendType.ORACLE: self._load_oracle,
        }, "schema loader")

    def fetch_schema(self, connection) -> SchemaDescriptor:
        """
        Build the SchemaDescriptor for a connection.

        Args:
            connection: A connected BackendConnection

        Returns:
            SchemaDescriptor with the rendered schema text

        Raises:
            SchemaFetchError: if the catalog cannot be read
        """
        backend_type = connection.backend_type
        if not connection.connected:
            raise SchemaFetchError("Connection is closed", backend_type=backend_type)

        logger.info(f"Fetching schema for {backend_type.value}")
        try:
            with connection.serialized():
                descriptor = self._loaders[backend_type](connection)
        except Exception as e:
            logger.error(f"Schema fetch failed for {backend_type.value}: {e}")
            raise SchemaFetchError("Schema fetch failed", backend_type=backend_type, cause=e) from e

        logger.info(f"Loaded schema for {backend_type.value} ({len(descriptor.tables)} tables)")
        return descriptor

    def _relational_descriptor(self, backend_type: BackendType, rows) -> SchemaDescriptor:
        tables = group_catalog_rows(rows)
        return SchemaDescriptor(
            backend_type=backend_type,
            rendered_text=render_tables(tables),
            tables=tuple(t.name for t in tables),
        )

    def _load_postgres(self, connection) -> SchemaDescriptor:
        schema_name = connection.settings.schema_name if connection.settings else "public"
        with connection.borrowed() as conn:
            with conn.cursor() as cursor:
                cursor.execute(POSTGRES_CATALOG_QUERY, (schema_name,))
                rows = cursor.fetchall()
        return self._relational_descriptor(BackendType.POSTGRES, rows)

    def _load_mysql(self, connection) -> SchemaDescriptor:
        with connection.handle.cursor() as cursor:
            cursor.execute(MYSQL_CATALOG_QUERY)
            rows = [
                (r["table_name"], r["column_name"], r["data_type"], r["is_nullable"])
                for r in cursor.fetchall()
            ]
        return self._relational_descriptor(BackendType.MYSQL, rows)

    def _load_oracle(self, connection) -> SchemaDescriptor:
        with connection.handle.cursor() as cursor:
            cursor.execute(ORACLE_CATALOG_QUERY)
            rows = cursor.fetchall()
        return self._relational_descriptor(BackendType.ORACLE, rows)

    def _load_mongo(self, connection) -> SchemaDescriptor:
        names = sorted(
            name for name in connection.database.list_collection_names()
            if not name.startswith("system.")
        )
        return SchemaDescriptor(
            backend_type=BackendType.MONGODB,
            rendered_text=render_collections(names),
            tables=tuple(names),
        )
