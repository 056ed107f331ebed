"""
Constrained command language for the document store.

Generated document queries are parsed as data, never evaluated:

    find <collection> {"filter": {...}, "projection": {...}, "sort": [["field", 1]], "limit": 10, "skip": 0}
    aggregate <collection> [{"$match": {...}}, {"$group": {...}}]
    count <collection> {"status": "active"}
"""

import json
import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

ALLOWED_OPERATIONS = ("find", "aggregate", "count")

ALLOWED_FIND_OPTIONS = {"filter", "projection", "sort", "limit", "skip"}

ALLOWED_STAGES = {
    "$match", "$project", "$group", "$sort", "$limit", "$skip", "$unwind",
    "$count", "$lookup", "$addFields", "$set", "$unset", "$facet", "$bucket",
    "$sortByCount", "$replaceRoot", "$sample",
}

# Server-side code execution or writes, rejected at any depth
FORBIDDEN_OPERATORS = {"$where", "$function", "$accumulator", "$out", "$merge"}

_COMMAND = re.compile(r"^\s*(\w+)\s+([A-Za-z_][\w.\-]*)\s*(.*)$", re.DOTALL)


class UnsafeCommandError(ValueError):
    """A document command is malformed or outside the allowlist."""


@dataclass(frozen=True)
class DocumentCommand:
    """A validated read operation against one collection."""
    operation: str
    collection: str
    filter: Dict[str, Any] = field(default_factory=dict)
    projection: Optional[Dict[str, Any]] = None
    sort: Optional[List[Tuple[str, int]]] = None
    limit: Optional[int] = None
    skip: Optional[int] = None
    pipeline: Optional[List[Dict[str, Any]]] = None


def parse_document_command(text: str, max_limit: int = 1000) -> DocumentCommand:
    """
    Parse and validate a generated document-store command.

    Args:
        text: Command text as produced by the generator
        max_limit: Upper bound for find limits

    Returns:
        DocumentCommand

    Raises:
        UnsafeCommandError: if the command is malformed or not allowlisted
    """
    match = _COMMAND.match(text or "")
    if not match:
        raise UnsafeCommandError("Expected '<operation> <collection> <json>'")

    operation, collection, raw_argument = match.group(1).lower(), match.group(2), match.group(3).strip()

    if operation not in ALLOWED_OPERATIONS:
        raise UnsafeCommandError(f"Operation not allowed: {operation}")
    if collection.startswith("system."):
        raise UnsafeCommandError(f"Collection not allowed: {collection}")

    argument = _load_argument(raw_argument)
    _reject_forbidden_operators(argument)

    if operation == "find":
        return _build_find(collection, argument, max_limit)
    if operation == "aggregate":
        return _build_aggregate(collection, argument)
    return _build_count(collection, argument)


def _load_argument(raw_argument: str) -> Any:
    if not raw_argument:
        return None
    try:
        return json.loads(raw_argument)
    except json.JSONDecodeError as e:
        raise UnsafeCommandError(f"Argument is not valid JSON: {e.msg}") from e


def _reject_forbidden_operators(value: Any):
    if isinstance(value, dict):
        for key, item in value.items():
            if key in FORBIDDEN_OPERATORS:
                logger.warning(f"Rejected document command using {key}")
                raise UnsafeCommandError(f"Operator not allowed: {key}")
            _reject_forbidden_operators(item)
    elif isinstance(value, list):
        for item in value:
            _reject_forbidden_operators(item)


def _build_find(collection: str, argument: Any, max_limit: int) -> DocumentCommand:
    options = argument if argument is not None else {}
    if not isinstance(options, dict):
        raise UnsafeCommandError("find expects a JSON object of options")

    unknown = set(options) - ALLOWED_FIND_OPTIONS
    if unknown:
        raise UnsafeCommandError(f"Unknown find options: {', '.join(sorted(unknown))}")

    filter_doc = options.get("filter") or {}
    if not isinstance(filter_doc, dict):
        raise UnsafeCommandError("filter must be a JSON object")

    projection = options.get("projection")
    if projection is not None and not isinstance(projection, dict):
        raise UnsafeCommandError("projection must be a JSON object")

    limit = _non_negative_int(options.get("limit"), "limit")
    if limit is not None and limit > max_limit:
        raise UnsafeCommandError(f"limit exceeds maximum of {max_limit}")

    return DocumentCommand(
        operation="find",
        collection=collection,
        filter=filter_doc,
        projection=projection,
        sort=_parse_sort(options.get("sort")),
        limit=limit,
        skip=_non_negative_int(options.get("skip"), "skip"),
    )


def _build_aggregate(collection: str, argument: Any) -> DocumentCommand:
    if not isinstance(argument, list) or not argument:
        raise UnsafeCommandError("aggregate expects a non-empty JSON array of stages")

    for stage in argument:
        if not isinstance(stage, dict) or len(stage) != 1:
            raise UnsafeCommandError("Each aggregation stage must be an object with one operator")
        name = next(iter(stage))
        if name not in ALLOWED_STAGES:
            raise UnsafeCommandError(f"Aggregation stage not allowed: {name}")

    return DocumentCommand(operation="aggregate", collection=collection, pipeline=argument)


def _build_count(collection: str, argument: Any) -> DocumentCommand:
    filter_doc = argument if argument is not None else {}
    if not isinstance(filter_doc, dict):
        raise UnsafeCommandError("count expects a JSON object filter")
    return DocumentCommand(operation="count", collection=collection, filter=filter_doc)


def _parse_sort(value: Any) -> Optional[List[Tuple[str, int]]]:
    if value is None:
        return None

    if isinstance(value, dict):
        pairs = list(value.items())
    elif isinstance(value, list):
        pairs = []
        for item in value:
            if not isinstance(item, (list, tuple)) or len(item) != 2:
                raise UnsafeCommandError("sort entries must be [field, direction] pairs")
            pairs.append((item[0], item[1]))
    else:
        raise UnsafeCommandError("sort must be an object or a list of pairs")

    for field_name, direction in pairs:
        if not isinstance(field_name, str) or direction not in (1, -1):
            raise UnsafeCommandError(f"Invalid sort entry: {field_name!r} {direction!r}")
    return [(field_name, direction) for field_name, direction in pairs]


def _non_negative_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise UnsafeCommandError(f"{name} must be a non-negative integer")
    return value
