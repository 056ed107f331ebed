"""
Shared data model for the query pipeline.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import UnavailableBackendError


class BackendType(Enum):
    """Database technologies a request can target."""
    POSTGRES = "postgres"  # relational-A
    MYSQL = "mysql"  # relational-B
    MONGODB = "mongodb"  # document
    ORACLE = "oracle"  # relational-C

    @classmethod
    def parse(cls, value) -> "BackendType":
        """Resolve an enum member from a member or its (case-insensitive) value."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise UnavailableBackendError(f"Unknown backend type: {value!r}")

    @property
    def is_relational(self) -> bool:
        return self is not BackendType.MONGODB


def ensure_complete(mapping: Dict["BackendType", Any], what: str) -> Dict["BackendType", Any]:
    """Fail at import time if a per-backend table misses a backend type."""
    missing = [b.value for b in BackendType if b not in mapping]
    if missing:
        raise TypeError(f"No {what} registered for: {', '.join(missing)}")
    return mapping


@dataclass(frozen=True)
class SchemaDescriptor:
    """Rendered structural metadata used to ground generation."""
    backend_type: BackendType
    rendered_text: str
    tables: Tuple[str, ...] = ()


@dataclass(frozen=True)
class GeneratedQuery:
    """A query produced for one request."""
    source_natural_query: str
    backend_type: BackendType
    text: str


@dataclass
class QueryResult:
    """Backend-agnostic result envelope."""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"rows": self.rows}
        if self.metadata is not None:
            result["metadata"] = self.metadata
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueryResult":
        return cls(rows=list(data.get("rows") or []), metadata=data.get("metadata"))


@dataclass
class ValidationResult:
    """Returned instead of rows for validate-only requests."""
    query: str
    status: str = "valid"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, "query": self.query}
