"""Intelligence layer - schema grounding and query generation."""
from .schema_loader import SchemaLoader, TableSchema
from .dialects import Dialect, DialectRegistry, DEFAULT_DIALECTS
from .llm_service import MistralQueryGenerator, create_query_generator

__all__ = [
    'SchemaLoader',
    'TableSchema',
    'Dialect',
    'DialectRegistry',
    'DEFAULT_DIALECTS',
    'MistralQueryGenerator',
    'create_query_generator'
]
