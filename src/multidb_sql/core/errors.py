"""
Error taxonomy for the query pipeline.

PipelineError subclasses fail the current request (or, during initialization,
the affected backend only). RecoverableError subclasses are handled where they
are raised and never reach the caller.
"""

from typing import Optional


class PipelineError(Exception):
    """Base class for errors that fail a request."""

    def __init__(
        self,
        message: str,
        backend_type=None,
        cause: Optional[BaseException] = None
    ):
        self.backend_type = backend_type
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.backend_type is not None:
            message = f"[{_backend_name(self.backend_type)}] {message}"
        if self.cause is not None:
            message = f"{message}: {self.cause}"
        return message


class BackendConnectionError(PipelineError):
    """Backend unreachable, misconfigured or rejected the credentials."""


class SchemaFetchError(PipelineError):
    """The backend's metadata catalog could not be read."""


class GenerationError(PipelineError):
    """The generation service failed or produced unusable output."""

    def __init__(
        self,
        message: str,
        backend_type=None,
        cause: Optional[BaseException] = None,
        reason: Optional[str] = None
    ):
        self.reason = reason or message
        super().__init__(message, backend_type=backend_type, cause=cause)


class ExecutionError(PipelineError):
    """The backend rejected or failed the generated query."""


class UnavailableBackendError(PipelineError):
    """The requested backend is unknown or was not initialized."""


class InvalidQueryError(PipelineError):
    """The natural-language request itself is unusable (empty, too long)."""


class RecoverableError(Exception):
    """Base class for errors that degrade behavior but never fail a request."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message if cause is None else f"{message}: {cause}")


class CacheError(RecoverableError):
    """Cache backend unreachable or a read/write failed."""


def _backend_name(backend_type) -> str:
    return getattr(backend_type, "value", str(backend_type))
