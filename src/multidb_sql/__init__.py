"""Natural-language query pipeline over heterogeneous database backends."""
from .core import (
    AppConfig,
    BackendRegistry,
    BackendType,
    QueryPipeline,
    QueryResult,
    ValidationResult,
    load_configuration,
)

__version__ = "0.1.0"

__all__ = [
    'AppConfig',
    'BackendRegistry',
    'BackendType',
    'QueryPipeline',
    'QueryResult',
    'ValidationResult',
    'load_configuration',
]
