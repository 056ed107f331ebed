"""
Tests for input validation, the read-only gate, the document command
allowlist, schema rendering and query generation.
These tests don't require external dependencies or network access.
"""

from unittest.mock import MagicMock

import pytest

from conftest import FakeMistralClient, USERS_SCHEMA
from multidb_sql.core.errors import GenerationError, SchemaFetchError
from multidb_sql.core.models import BackendType, GeneratedQuery, SchemaDescriptor
from multidb_sql.data.connection_manager import BackendConnection
from multidb_sql.core.config import BackendSettings
from multidb_sql.intelligence.dialects import DEFAULT_DIALECTS, Dialect, DialectRegistry
from multidb_sql.intelligence.llm_service import MistralQueryGenerator
from multidb_sql.intelligence.schema_loader import (
    SchemaLoader,
    group_catalog_rows,
    render_tables,
)
from multidb_sql.security.document_commands import UnsafeCommandError, parse_document_command
from multidb_sql.security.security import SecurityConfig, SecurityValidator

SELECT_KEYWORDS = ("SELECT",)


def test_security_validator():
    """Test natural-language input validation."""
    validator = SecurityValidator(SecurityConfig(max_query_length=100))

    is_valid, error = validator.validate_query("find all active users")
    assert is_valid, f"Valid query rejected: {error}"

    is_valid, error = validator.validate_query("   ")
    assert not is_valid, "Empty query not detected"

    is_valid, error = validator.validate_query("a" * 101)
    assert not is_valid and "maximum length" in error, f"Long query not detected: {error}"

    # Wording that mentions SQL verbs is still a legitimate request
    is_valid, error = validator.validate_query("show users who asked to delete their account")
    assert is_valid, f"Natural wording rejected: {error}"


def test_input_sanitization():
    """Test input sanitization."""
    validator = SecurityValidator()

    sanitized = validator.sanitize_input("find\x00 all   active\n users")
    assert sanitized == "find all active users", f"Unexpected sanitized input: {sanitized!r}"


def test_clean_generated_text():
    validator = SecurityValidator()

    assert validator.clean_generated_text("```sql\nSELECT * FROM users;\n```") == "SELECT * FROM users"
    assert validator.clean_generated_text("```SELECT 1```") == "SELECT 1"
    assert validator.clean_generated_text("  SELECT `name` FROM t ;; ") == "SELECT `name` FROM t"
    assert validator.clean_generated_text(None) == ""

    # Any language tag on its own fence line is dropped with the fence
    for tag in ("", "pgsql", "oracle", "sqlite", "plaintext", "tsql", "c++", "PostgreSQL"):
        cleaned = validator.clean_generated_text(f"```{tag}\nSELECT 1\n```")
        assert cleaned == "SELECT 1", f"Fence tag {tag!r} left behind: {cleaned!r}"
    assert validator.clean_generated_text("```mongo\r\nfind users {}\r\n```") == "find users {}"
    assert validator.clean_generated_text("```sql SELECT 1```") == "SELECT 1"


def test_generator_accepts_any_fence_tag():
    generator = MistralQueryGenerator(client=FakeMistralClient(content="```pgsql\nSELECT 1\n```"))

    assert generator.generate("one", BackendType.POSTGRES, USERS_SCHEMA).text == "SELECT 1"


def test_read_only_gate():
    """Only texts starting with a read-only keyword pass."""
    validator = SecurityValidator()

    is_valid, reason = validator.validate_generated("select id from users", SELECT_KEYWORDS)
    assert is_valid, f"Lowercase SELECT rejected: {reason}"

    for text in ("DELETE FROM users", "DROP TABLE users", "UPDATE users SET status = 'x'", "selection"):
        is_valid, reason = validator.validate_generated(text, SELECT_KEYWORDS)
        assert not is_valid and reason == "non-read-only output", f"Not blocked: {text}"

    is_valid, reason = validator.validate_generated("", SELECT_KEYWORDS)
    assert not is_valid and reason == "empty output"

    is_valid, reason = validator.validate_generated("SELECT 1; DROP TABLE users", SELECT_KEYWORDS)
    assert not is_valid and reason == "multiple statements"

    # A semicolon inside a literal is not a statement boundary
    is_valid, reason = validator.validate_generated("SELECT * FROM notes WHERE body = 'a;b'", SELECT_KEYWORDS)
    assert is_valid, f"Literal semicolon rejected: {reason}"


def test_document_command_find():
    command = parse_document_command(
        'find users {"filter": {"status": "active"}, "projection": {"name": 1}, '
        '"sort": [["name", 1]], "limit": 5}'
    )
    assert command.operation == "find"
    assert command.collection == "users"
    assert command.filter == {"status": "active"}
    assert command.projection == {"name": 1}
    assert command.sort == [("name", 1)]
    assert command.limit == 5

    command = parse_document_command("find users")
    assert command.filter == {} and command.limit is None

    command = parse_document_command('find users {"sort": {"age": -1}}')
    assert command.sort == [("age", -1)]


def test_document_command_aggregate_and_count():
    command = parse_document_command(
        'aggregate orders [{"$match": {"status": "paid"}}, {"$group": {"_id": "$region", "total": {"$sum": "$amount"}}}]'
    )
    assert command.operation == "aggregate"
    assert len(command.pipeline) == 2

    command = parse_document_command('COUNT users {"status": "active"}')
    assert command.operation == "count"
    assert command.filter == {"status": "active"}


@pytest.mark.parametrize("text", [
    'deleteMany users {"status": "inactive"}',
    'aggregate users [{"$out": "stolen"}]',
    'aggregate users [{"$merge": {"into": "other"}}]',
    'find users {"filter": {"$where": "sleep(1000)"}}',
    'find users {"filter": {"a": {"$function": {"body": "x", "args": [], "lang": "js"}}}}',
    'aggregate users [{"$group": {"_id": null, "x": {"$accumulator": {}}}}]',
    'find system.users {}',
    'find users {"filter": db.dropDatabase()}',
    'find users {"limit": 5000}',
    'find users {"hint": "x"}',
    'find users {"sort": [["name", 2]]}',
    'aggregate users []',
    'count users [1, 2]',
    'db.users.find({})',
])
def test_document_command_rejected(text):
    with pytest.raises(UnsafeCommandError):
        parse_document_command(text)


def test_schema_rendering():
    """Catalog rows render grouped by table in catalog order."""
    rows = [
        ("orders", "id", "integer", "NO"),
        ("orders", "total", "numeric", "YES"),
        ("users", "id", "integer", "NO"),
        ("users", "name", "text", "YES"),
        ("users", "email", "text", "YES"),
        ("users", "status", "text", "YES"),
    ]

    tables = group_catalog_rows(rows)
    assert [t.name for t in tables] == ["orders", "users"]
    assert tables[1].columns == ["id", "name", "email", "status"]

    rendered = render_tables(tables)
    assert rendered == (
        "Table orders {\n  id integer NOT NULL\n  total numeric\n}\n\n"
        "Table users {\n  id integer NOT NULL\n  name text\n  email text\n  status text\n}"
    ), f"Unexpected schema text:\n{rendered}"
    assert render_tables(group_catalog_rows(rows)) == rendered, "Rendering is not deterministic"


def test_schema_loader_postgres():
    pool = MagicMock()
    cursor = pool.getconn.return_value.cursor.return_value.__enter__.return_value
    cursor.fetchall.return_value = [("users", "id", "integer", "NO"), ("users", "status", "text", "YES")]
    connection = BackendConnection(
        BackendType.POSTGRES, pool, settings=BackendSettings(schema_name="sales")
    )

    descriptor = SchemaLoader().fetch_schema(connection)

    assert descriptor.backend_type is BackendType.POSTGRES
    assert descriptor.tables == ("users",)
    assert "Table users {" in descriptor.rendered_text
    assert cursor.execute.call_args.args[1] == ("sales",)
    pool.putconn.assert_called_once()


def test_schema_loader_oracle_and_mysql():
    oracle = MagicMock()
    cursor = oracle.cursor.return_value.__enter__.return_value
    cursor.fetchall.return_value = [("EMP", "ENAME", "VARCHAR2", "Y", 100), ("EMP", "EMPNO", "NUMBER", "N", 22)]
    descriptor = SchemaLoader().fetch_schema(BackendConnection(BackendType.ORACLE, oracle))
    assert descriptor.rendered_text == "Table EMP {\n  ENAME VARCHAR2(100)\n  EMPNO NUMBER(22) NOT NULL\n}"

    mysql = MagicMock()
    cursor = mysql.cursor.return_value.__enter__.return_value
    cursor.fetchall.return_value = [
        {"table_name": "users", "column_name": "id", "data_type": "int", "is_nullable": "NO"},
    ]
    descriptor = SchemaLoader().fetch_schema(BackendConnection(BackendType.MYSQL, mysql))
    assert descriptor.rendered_text == "Table users {\n  id int NOT NULL\n}"


def test_schema_loader_mongo_lists_collections_only():
    client = MagicMock()
    database = MagicMock()
    database.list_collection_names.return_value = ["users", "orders", "system.views"]
    connection = BackendConnection(BackendType.MONGODB, client, database=database)

    descriptor = SchemaLoader().fetch_schema(connection)

    assert descriptor.tables == ("orders", "users")
    assert descriptor.rendered_text == (
        "Collection orders {\n  // Schema is dynamic\n}\n\n"
        "Collection users {\n  // Schema is dynamic\n}"
    )
    database.__getitem__.assert_not_called()


def test_schema_loader_failure():
    pool = MagicMock()
    pool.getconn.side_effect = RuntimeError("server closed the connection")

    with pytest.raises(SchemaFetchError) as exc_info:
        SchemaLoader().fetch_schema(BackendConnection(BackendType.POSTGRES, pool))
    assert exc_info.value.backend_type is BackendType.POSTGRES

    closed = BackendConnection(BackendType.POSTGRES, MagicMock(), connected=False)
    with pytest.raises(SchemaFetchError):
        SchemaLoader().fetch_schema(closed)


def test_every_backend_has_a_dialect():
    assert set(DEFAULT_DIALECTS) == set(BackendType)
    assert DEFAULT_DIALECTS[BackendType.MONGODB].structured_commands


def test_generator_prompt_and_cleanup():
    client = FakeMistralClient(content="```sql\nSELECT * FROM \"users\" WHERE status = 'active';\n```")
    generator = MistralQueryGenerator(client=client, model="mistral-small-latest", timeout=5)

    query = generator.generate("find all active users", BackendType.POSTGRES, USERS_SCHEMA)

    assert query == GeneratedQuery(
        source_natural_query="find all active users",
        backend_type=BackendType.POSTGRES,
        text="SELECT * FROM \"users\" WHERE status = 'active'",
    )
    assert len(client.calls) == 1
    call = client.calls[0]
    assert call["model"] == "mistral-small-latest"
    assert call["timeout_ms"] == 5000
    prompt = client.last_prompt
    assert "Table users {" in prompt
    assert "find all active users" in prompt
    assert "PostgreSQL" in prompt
    assert "double quotes" in prompt
    assert "must begin with SELECT" in prompt


def test_generator_rejects_non_read_only_output():
    client = FakeMistralClient(content="DELETE FROM users WHERE status = 'inactive'")
    generator = MistralQueryGenerator(client=client)

    with pytest.raises(GenerationError) as exc_info:
        generator.generate("remove inactive users", BackendType.MYSQL, "Table users {\n  id int\n}")
    assert exc_info.value.reason == "non-read-only output"


def test_generator_rejects_multiple_statements():
    generator = MistralQueryGenerator(client=FakeMistralClient(content="SELECT 1; DELETE FROM users"))

    with pytest.raises(GenerationError) as exc_info:
        generator.generate("anything", BackendType.ORACLE, "")
    assert exc_info.value.reason == "multiple statements"


def test_generator_service_failure_is_not_retried():
    client = FakeMistralClient(error=RuntimeError("503 Service Unavailable"))
    generator = MistralQueryGenerator(client=client)

    with pytest.raises(GenerationError) as exc_info:
        generator.generate("find all active users", BackendType.POSTGRES, USERS_SCHEMA)
    assert exc_info.value.reason == "service failure"
    assert isinstance(exc_info.value.cause, RuntimeError)
    assert len(client.calls) == 1


def test_generator_document_commands():
    schema = SchemaDescriptor(BackendType.MONGODB, "Collection users {\n  // Schema is dynamic\n}", ("users",))

    generator = MistralQueryGenerator(client=FakeMistralClient(content='find users {"filter": {"status": "active"}}'))
    assert generator.generate("active users", BackendType.MONGODB, schema).text.startswith("find users")
    assert "aggregate <collection>" in generator.client.last_prompt

    generator = MistralQueryGenerator(client=FakeMistralClient(content='aggregate users [{"$out": "copy"}]'))
    with pytest.raises(GenerationError) as exc_info:
        generator.generate("copy users", BackendType.MONGODB, schema)
    assert exc_info.value.reason == "unsafe command"

    generator = MistralQueryGenerator(client=FakeMistralClient(content="db.users.drop()"))
    with pytest.raises(GenerationError) as exc_info:
        generator.generate("drop users", BackendType.MONGODB, schema)
    assert exc_info.value.reason == "non-read-only output"


def test_dialect_hints_are_pluggable():
    dialects = DialectRegistry()
    dialects.add_hints(BackendType.MYSQL, "Never use SELECT *")
    dialects.register(BackendType.ORACLE, Dialect(
        name="Oracle 11g",
        read_only_keywords=("SELECT",),
        output_rules=("Return only SQL",),
        hints=("Use ROWNUM to limit rows",),
    ))
    client = FakeMistralClient(content="SELECT id FROM users")
    generator = MistralQueryGenerator(client=client, dialects=dialects)

    generator.generate("ids", BackendType.MYSQL, "")
    assert "Never use SELECT *" in client.last_prompt
    assert "(no tables found)" in client.last_prompt

    generator.generate("ids", BackendType.ORACLE, "")
    assert "Oracle 11g" in client.last_prompt
    assert "ROWNUM" in client.last_prompt
    assert "double quotes" not in client.last_prompt
