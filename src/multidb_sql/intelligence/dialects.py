"""
Query dialects used to ground generation.

Each backend type maps to a Dialect describing what the generator must emit:
its name, the read-only keywords the gate accepts, output rules, and any
dialect-specific hints. Hints are data, so callers can extend or replace them
without touching the generator.
"""

from dataclasses import dataclass, field, replace
from typing import Dict, Optional, Tuple

from ..core.models import BackendType, ensure_complete

SQL_OUTPUT_RULES = (
    "Return only the raw query text, no markdown formatting and no code fences",
    "No explanations or comments",
    "Exactly one statement, on a single line",
    "The query must be read-only and must begin with SELECT",
    "Only use tables and columns that exist in the schema provided",
)

DOCUMENT_OUTPUT_RULES = (
    "Return only the raw command text, no markdown formatting and no code fences",
    "No explanations or comments",
    "Exactly one command, on a single line",
    "Use one of these forms, where the final argument is strict JSON:",
    '  find <collection> {"filter": {...}, "projection": {...}, "sort": [["field", 1]], "limit": 100}',
    '  aggregate <collection> [{"$match": {...}}, {"$group": {...}}]',
    '  count <collection> {...filter...}',
    "Never use $where, $function, $accumulator, $out or $merge",
    "Only use collections that exist in the schema provided",
)


@dataclass(frozen=True)
class Dialect:
    """Generation contract for one backend's query language."""
    name: str
    read_only_keywords: Tuple[str, ...]
    output_rules: Tuple[str, ...]
    hints: Tuple[str, ...] = field(default_factory=tuple)
    structured_commands: bool = False

    def with_hints(self, *hints: str) -> "Dialect":
        return replace(self, hints=self.hints + tuple(hints))


DEFAULT_DIALECTS: Dict[BackendType, Dialect] = ensure_complete({
    BackendType.POSTGRES: Dialect(
        name="PostgreSQL",
        read_only_keywords=("SELECT",),
        output_rules=SQL_OUTPUT_RULES,
        hints=('Wrap table names in double quotes, for example: SELECT DISTINCT make FROM "Car"',),
    ),
    BackendType.MYSQL: Dialect(
        name="MySQL",
        read_only_keywords=("SELECT",),
        output_rules=SQL_OUTPUT_RULES,
        hints=("Quote identifiers that need quoting with backticks",),
    ),
    BackendType.MONGODB: Dialect(
        name="MongoDB",
        read_only_keywords=("find", "aggregate", "count"),
        output_rules=DOCUMENT_OUTPUT_RULES,
        structured_commands=True,
    ),
    BackendType.ORACLE: Dialect(
        name="Oracle SQL",
        read_only_keywords=("SELECT",),
        output_rules=SQL_OUTPUT_RULES,
        hints=("Use FETCH FIRST n ROWS ONLY instead of LIMIT",),
    ),
}, "dialect")


class DialectRegistry:
    """Per-backend dialects, overridable at construction or afterwards."""

    def __init__(self, overrides: Optional[Dict[BackendType, Dialect]] = None):
        self._dialects = dict(DEFAULT_DIALECTS)
        if overrides:
            self._dialects.update(overrides)

    def get(self, backend_type: BackendType) -> Dialect:
        return self._dialects[backend_type]

    def register(self, backend_type: BackendType, dialect: Dialect):
        self._dialects[backend_type] = dialect

    def add_hints(self, backend_type: BackendType, *hints: str):
        self._dialects[backend_type] = self._dialects[backend_type].with_hints(*hints)
