"""
Registry of initialized backends.

Built once at startup and shared read-only afterwards. A backend appears here
only when both its connection and its grounding schema were established.
"""

import logging
from typing import Dict, List, Optional

from .config import BackendSettings
from .errors import BackendConnectionError, PipelineError, UnavailableBackendError
from .models import BackendType, SchemaDescriptor
from ..data.connection_manager import BackendConnection, ConnectionManager
from ..intelligence.schema_loader import SchemaLoader

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Owns the connection and schema of every available backend."""

    def __init__(
        self,
        connection_manager: Optional[ConnectionManager] = None,
        schema_loader: Optional[SchemaLoader] = None
    ):
        self.connection_manager = connection_manager or ConnectionManager()
        self.schema_loader = schema_loader or SchemaLoader()
        self._connections: Dict[BackendType, BackendConnection] = {}
        self._schemas: Dict[BackendType, SchemaDescriptor] = {}
        self.failures: Dict[BackendType, PipelineError] = {}

    def initialize(self, backends: Dict[BackendType, BackendSettings]) -> List[BackendType]:
        """
        Connect and load the schema of every enabled backend, one at a time.

        A failing backend is logged and left out; the others continue.

        Args:
            backends: Settings per backend type

        Returns:
            The backend types that are now available
        """
        for backend_type, settings in backends.items():
            if not settings.enabled:
                logger.info(f"Skipping disabled backend {backend_type.value}")
                continue

            logger.info(f"Initializing {backend_type.value} connection")
            try:
                self.add_backend(backend_type, settings)
                logger.info(f"{backend_type.value} initialization complete")
            except PipelineError as e:
                self.failures[backend_type] = e
                logger.error(f"Failed to initialize {backend_type.value}: {e}")

        available = self.available_backends()
        logger.info(f"Available backends: {', '.join(b.value for b in available) or 'none'}")
        return available

    def add_backend(self, backend_type: BackendType, settings: BackendSettings):
        """Connect one backend and fetch its schema; both succeed or neither is kept."""
        connection = self.connection_manager.connect(backend_type, settings)
        try:
            schema = self.schema_loader.fetch_schema(connection)
        except PipelineError:
            self._release(connection)
            raise

        self._connections[backend_type] = connection
        self._schemas[backend_type] = schema
        self.failures.pop(backend_type, None)

    def available_backends(self) -> List[BackendType]:
        return [b for b in BackendType if b in self._connections]

    def is_available(self, backend_type: BackendType) -> bool:
        return backend_type in self._connections

    def connection(self, backend_type: BackendType) -> BackendConnection:
        connection = self._connections.get(backend_type)
        if connection is None or not connection.connected:
            raise UnavailableBackendError(
                "No connection available for database type",
                backend_type=backend_type,
                cause=self.failures.get(backend_type)
            )
        return connection

    def schema(self, backend_type: BackendType) -> SchemaDescriptor:
        schema = self._schemas.get(backend_type)
        if schema is None:
            raise UnavailableBackendError("No schema loaded for database type", backend_type=backend_type)
        return schema

    def shutdown(self):
        """Close every connection. Per-connection failures are logged, not raised."""
        connections, self._connections = self._connections, {}
        self._schemas = {}
        for connection in connections.values():
            self._release(connection)

    def _release(self, connection: BackendConnection):
        try:
            self.connection_manager.close(connection)
        except BackendConnectionError as e:
            logger.error(f"Failed to close {connection.backend_type.value} connection: {e}")
