"""Core application logic."""
from .errors import (
    PipelineError,
    BackendConnectionError,
    SchemaFetchError,
    GenerationError,
    ExecutionError,
    UnavailableBackendError,
    InvalidQueryError,
    RecoverableError,
    CacheError,
)
from .models import BackendType, SchemaDescriptor, GeneratedQuery, QueryResult, ValidationResult
from .config import AppConfig, BackendSettings, CacheSettings, GenerationSettings, load_configuration
from .registry import BackendRegistry
from .pipeline import QueryPipeline

__all__ = [
    'PipelineError',
    'BackendConnectionError',
    'SchemaFetchError',
    'GenerationError',
    'ExecutionError',
    'UnavailableBackendError',
    'InvalidQueryError',
    'RecoverableError',
    'CacheError',
    'BackendType',
    'SchemaDescriptor',
    'GeneratedQuery',
    'QueryResult',
    'ValidationResult',
    'AppConfig',
    'BackendSettings',
    'CacheSettings',
    'GenerationSettings',
    'load_configuration',
    'BackendRegistry',
    'QueryPipeline',
]
