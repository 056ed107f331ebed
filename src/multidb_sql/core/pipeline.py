"""
Query pipeline controller.
Sequences cache lookup, query generation, execution and cache storage for one request.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Optional, Union

from .config import AppConfig
from .errors import (
    ExecutionError,
    GenerationError,
    InvalidQueryError,
    PipelineError,
    UnavailableBackendError,
)
from .models import BackendType, GeneratedQuery, QueryResult, ValidationResult
from .registry import BackendRegistry
from ..data.cache import QueryCache
from ..data.executors import ExecutionDispatcher
from ..intelligence.llm_service import create_query_generator
from ..security.security import SecurityValidator

logger = logging.getLogger(__name__)


class QueryPipeline:
    """
    Natural-language query pipeline across heterogeneous backends.

    Per request: validate input, resolve the backend, check the cache, generate
    a read-only query, optionally stop there (validate-only), execute it and
    store the result. Generation and execution failures propagate; cache
    failures only cost a cache miss.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        generator=None,
        dispatcher: Optional[ExecutionDispatcher] = None,
        cache: Optional[QueryCache] = None,
        security_validator: Optional[SecurityValidator] = None,
        generation_timeout: Optional[float] = 30.0,
        execution_timeout: Optional[float] = 30.0,
        cache_ttl: Optional[int] = None,
        max_workers: int = 8
    ):
        """
        Initialize the pipeline.

        Args:
            registry: Initialized backend registry
            generator: Query generator whose ``generate(query, backend_type, schema)`` returns a GeneratedQuery
            dispatcher: Execution dispatcher
            cache: Result cache (optional)
            security_validator: Input validation and read-only gate
            generation_timeout: Deadline in seconds for one generation call
            execution_timeout: Deadline in seconds for one query execution
            cache_ttl: TTL for stored results; the cache default when omitted
            max_workers: Worker threads running deadline-bound calls
        """
        self.registry = registry
        self.generator = generator
        self.security_validator = security_validator or SecurityValidator()
        self.dispatcher = dispatcher or ExecutionDispatcher(self.security_validator.config)
        self.cache = cache
        self.generation_timeout = generation_timeout
        self.execution_timeout = execution_timeout
        self.cache_ttl = cache_ttl
        self._workers = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="query-pipeline")
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        registry: Optional[BackendRegistry] = None,
        generator=None,
        cache: Optional[QueryCache] = None
    ) -> "QueryPipeline":
        """Initialize every component from configuration."""
        logger.info("Initializing query pipeline")
        security_validator = SecurityValidator(config.security)

        if registry is None:
            registry = BackendRegistry()
            registry.initialize(config.backends)

        if generator is None:
            generator = create_query_generator(
                config.generation,
                timeout=config.generation_timeout,
                security_validator=security_validator
            )

        if cache is None:
            cache = QueryCache(config.cache)

        pipeline = cls(
            registry=registry,
            generator=generator,
            cache=cache,
            security_validator=security_validator,
            generation_timeout=config.generation_timeout,
            execution_timeout=config.execution_timeout,
            cache_ttl=config.cache.default_ttl,
            max_workers=config.max_workers
        )
        logger.info("Query pipeline initialized successfully")
        return pipeline

    def execute(
        self,
        natural_query: str,
        backend_type: Union[BackendType, str] = BackendType.POSTGRES,
        validate_only: bool = False,
        cache_enabled: bool = True
    ) -> Union[QueryResult, ValidationResult]:
        """
        Run one natural-language request.

        Args:
            natural_query: The user's request
            backend_type: Target backend (enum member or value)
            validate_only: Return the generated query without executing it
            cache_enabled: Consult and populate the result cache

        Returns:
            ValidationResult for validate-only requests, QueryResult otherwise

        Raises:
            InvalidQueryError, UnavailableBackendError, GenerationError, ExecutionError
        """
        if self._closed:
            raise UnavailableBackendError("Pipeline has been shut down")

        backend = BackendType.parse(backend_type)

        is_valid, error_msg = self.security_validator.validate_query(natural_query)
        if not is_valid:
            logger.warning(f"Rejected request: {error_msg}")
            raise InvalidQueryError(error_msg, backend_type=backend)
        natural_query = self.security_validator.sanitize_input(natural_query)

        logger.info(f"Executing query on {backend.value} (validate_only={validate_only})")

        connection = self.registry.connection(backend)
        schema = self.registry.schema(backend)

        # Cached entries hold rows, not query text, so validate-only bypasses the cache
        use_cache = cache_enabled and not validate_only and self.cache is not None

        if use_cache:
            cached = self.cache.get(natural_query, backend)
            if cached is not None:
                logger.info("Cache hit, returning cached result")
                return cached

        try:
            generated = self._generate(natural_query, backend, schema)
            logger.debug(f"Generated query: {generated.text}")

            if validate_only:
                return ValidationResult(query=generated.text)

            result = self._run_with_deadline(
                self.dispatcher.execute,
                (connection, generated.text),
                self.execution_timeout,
                ExecutionError("Query execution timed out", backend_type=backend)
            )
        except PipelineError as e:
            logger.error(f"Query execution failed: {e}")
            raise

        if use_cache:
            self.cache.put(natural_query, backend, result, ttl=self.cache_ttl)

        logger.info("Query executed successfully")
        return result

    def schema_text(self, backend_type: Union[BackendType, str]) -> str:
        return self.registry.schema(BackendType.parse(backend_type)).rendered_text

    def shutdown(self):
        """Release connections, the cache client and worker threads. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        logger.info("Starting cleanup")

        self.registry.shutdown()
        if self.cache is not None:
            self.cache.close()
        self._workers.shutdown(wait=False, cancel_futures=True)
        logger.info("Cleanup completed")

    def _generate(self, natural_query: str, backend: BackendType, schema) -> GeneratedQuery:
        if self.generator is None:
            raise GenerationError(
                "Generation service is not configured",
                backend_type=backend,
                reason="not configured"
            )
        return self._run_with_deadline(
            self.generator.generate,
            (natural_query, backend, schema),
            self.generation_timeout,
            GenerationError("Query generation timed out", backend_type=backend, reason="timeout")
        )

    def _run_with_deadline(self, fn, args, timeout: Optional[float], timeout_error: PipelineError):
        if not timeout or timeout <= 0:
            return fn(*args)

        future = self._workers.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout as e:
            future.cancel()
            raise timeout_error from e

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
