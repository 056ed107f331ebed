"""
Redis-backed result cache.

Fail-open: when Redis is missing or unreachable, reads miss and writes are
skipped. Failures are wrapped in CacheError, logged, and never propagated.
"""

import hashlib
import json
import logging
from typing import Optional

import redis
from redis.backoff import ExponentialBackoff
from redis.retry import Retry

from ..core.config import CacheSettings
from ..core.errors import CacheError
from ..core.models import BackendType, QueryResult

logger = logging.getLogger(__name__)


def make_cache_key(natural_query: str, backend_type: BackendType, prefix: str = "sql_cache:v1:") -> str:
    """Deterministic key; the backend value never contains the separator."""
    digest = hashlib.sha256(f"{backend_type.value}|{natural_query}".encode("utf-8")).hexdigest()
    return f"{prefix}{digest}"


class QueryCache:
    """Stores QueryResult envelopes keyed by (natural query, backend type)."""

    def __init__(self, settings: Optional[CacheSettings] = None, client=None):
        """
        Initialize the cache.

        Args:
            settings: Cache settings; no URL disables caching
            client: Pre-built Redis client, used instead of connecting from settings
        """
        self.settings = settings or CacheSettings()
        self._client = client if client is not None else self._connect()

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def _connect(self):
        if not self.settings.url:
            logger.info("No cache URL configured, caching disabled")
            return None

        try:
            client = redis.Redis.from_url(
                self.settings.url,
                socket_timeout=self.settings.socket_timeout,
                socket_connect_timeout=self.settings.socket_timeout,
                retry=Retry(ExponentialBackoff(cap=3.0, base=0.1), self.settings.max_retries),
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                health_check_interval=30,
                decode_responses=True,
            )
        except ValueError as e:
            logger.warning(f"Invalid cache URL, continuing without cache: {e}")
            return None

        try:
            client.ping()
            logger.info("Redis connected successfully")
        except redis.RedisError as e:
            # Keep the client: redis-py reconnects on the next command
            logger.warning(f"Redis connection failed, continuing without cache until it recovers: {e}")
        return client

    def key_for(self, natural_query: str, backend_type: BackendType) -> str:
        return make_cache_key(natural_query, backend_type, self.settings.key_prefix)

    def get(self, natural_query: str, backend_type: BackendType) -> Optional[QueryResult]:
        """Return the cached result, or None on miss or cache failure."""
        if self._client is None:
            return None

        key = self.key_for(natural_query, backend_type)
        try:
            cached = self._call("get", key)
            if cached is None:
                return None
            return QueryResult.from_dict(self._decode(cached))
        except CacheError as e:
            logger.warning(f"Cache retrieval failed, continuing without cache: {e}")
            return None

    def put(
        self,
        natural_query: str,
        backend_type: BackendType,
        result: QueryResult,
        ttl: Optional[int] = None
    ) -> bool:
        """Store a result with a TTL. Returns False when nothing was stored."""
        if self._client is None:
            return False

        key = self.key_for(natural_query, backend_type)
        expires = ttl or self.settings.default_ttl
        try:
            self._call("set", key, self._encode(result), ex=expires)
            logger.debug(f"Cached result under {key} for {expires}s")
            return True
        except CacheError as e:
            logger.warning(f"Cache storage failed, continuing without cache: {e}")
            return False

    def close(self):
        """Release the Redis client. Failures are logged."""
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            client.close()
            logger.info("Redis client closed")
        except Exception as e:
            logger.warning(f"Failed to close Redis client: {e}")

    def _call(self, method: str, *args, **kwargs):
        try:
            return getattr(self._client, method)(*args, **kwargs)
        except Exception as e:
            raise CacheError(f"Redis {method} failed", cause=e) from e

    @staticmethod
    def _encode(result: QueryResult) -> str:
        try:
            return json.dumps(result.to_dict(), default=str)
        except (TypeError, ValueError) as e:
            raise CacheError("Result is not serializable", cause=e) from e

    @staticmethod
    def _decode(raw) -> dict:
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise CacheError("Cached entry is corrupt", cause=e) from e

        if not isinstance(data, dict) or not isinstance(data.get("rows"), list):
            raise CacheError("Cached entry is not a result envelope")
        if not isinstance(data.get("metadata"), (dict, type(None))):
            raise CacheError("Cached entry has invalid metadata")
        return data
