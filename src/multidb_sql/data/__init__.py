"""Data layer components."""
from .connection_manager import BackendConnection, ConnectionManager
from .executors import ExecutionDispatcher
from .cache import QueryCache, make_cache_key

__all__ = [
    'BackendConnection',
    'ConnectionManager',
    'ExecutionDispatcher',
    'QueryCache',
    'make_cache_key'
]
