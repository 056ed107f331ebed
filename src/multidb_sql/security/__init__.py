"""Security layer - input validation, read-only gate and document command allowlist."""
from .security import SecurityValidator, SecurityConfig
from .document_commands import DocumentCommand, UnsafeCommandError, parse_document_command

__all__ = [
    'SecurityValidator',
    'SecurityConfig',
    'DocumentCommand',
    'UnsafeCommandError',
    'parse_document_command'
]
