"""
Configuration models and environment loading.
"""

import os
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from .models import BackendType
from ..security.security import SecurityConfig


class BackendSettings(BaseModel):
    """Connection parameters for one backend."""
    enabled: bool = True
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    schema_name: str = "public"
    url: Optional[str] = None
    connect_string: Optional[str] = None
    pool_size: int = 5
    connect_timeout: int = 10
    query_timeout: float = 30.0

    @field_validator("pool_size")
    @classmethod
    def _positive_pool(cls, value: int) -> int:
        if value < 1:
            raise ValueError("pool_size must be at least 1")
        return value


class CacheSettings(BaseModel):
    """Redis result cache settings. No URL means caching is disabled."""
    url: Optional[str] = None
    default_ttl: int = 3600
    socket_timeout: float = 1.0
    max_retries: int = 1
    key_prefix: str = "sql_cache:v1:"

    @field_validator("default_ttl")
    @classmethod
    def _positive_ttl(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("default_ttl must be positive")
        return value


class GenerationSettings(BaseModel):
    """Credentials and tuning for the external generation service."""
    api_key: Optional[str] = None
    model: str = "mistral-large-latest"
    temperature: float = 0.0
    max_tokens: int = 1000


class AppConfig(BaseModel):
    """Top-level configuration for the pipeline process."""
    backends: Dict[BackendType, BackendSettings] = Field(default_factory=dict)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    default_backend: BackendType = BackendType.POSTGRES
    generation_timeout: float = 30.0
    execution_timeout: float = 30.0
    max_workers: int = 8
    log_level: str = "INFO"

    @field_validator("default_backend", mode="before")
    @classmethod
    def _parse_backend(cls, value):
        return BackendType.parse(value)


def _env_bool(name: str, default: bool = True) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def load_configuration(dotenv_path: Optional[str] = None) -> AppConfig:
    """Load configuration from environment variables (and a .env file)."""
    load_dotenv(dotenv_path)

    query_timeout = _env_float('QUERY_TIMEOUT_SECONDS', 30.0)

    backends = {
        BackendType.POSTGRES: BackendSettings(
            enabled=_env_bool('PG_ENABLED'),
            host=os.getenv('PG_HOST'),
            port=_env_int('PG_PORT', 5432),
            user=os.getenv('PG_USER'),
            password=os.getenv('PG_PASSWORD'),
            database=os.getenv('PG_DB'),
            schema_name=os.getenv('PG_SCHEMA', 'public'),
            pool_size=_env_int('PG_POOL_SIZE', 5),
            query_timeout=query_timeout,
        ),
        BackendType.MYSQL: BackendSettings(
            enabled=_env_bool('MYSQL_ENABLED'),
            host=os.getenv('MYSQL_HOST'),
            port=_env_int('MYSQL_PORT', 3306),
            user=os.getenv('MYSQL_USER'),
            password=os.getenv('MYSQL_PASSWORD'),
            database=os.getenv('MYSQL_DB'),
            query_timeout=query_timeout,
        ),
        BackendType.MONGODB: BackendSettings(
            enabled=_env_bool('MONGODB_ENABLED'),
            url=os.getenv('MONGODB_URL'),
            database=os.getenv('MONGODB_DB'),
            query_timeout=query_timeout,
        ),
        BackendType.ORACLE: BackendSettings(
            enabled=_env_bool('ORACLE_ENABLED'),
            user=os.getenv('ORACLE_USER'),
            password=os.getenv('ORACLE_PASSWORD'),
            connect_string=os.getenv('ORACLE_CONNECT_STRING'),
            query_timeout=query_timeout,
        ),
    }

    return AppConfig(
        backends=backends,
        cache=CacheSettings(
            url=os.getenv('REDIS_URL'),
            default_ttl=_env_int('CACHE_TTL_SECONDS', 3600),
        ),
        generation=GenerationSettings(
            api_key=os.getenv('MISTRAL_API_KEY'),
            model=os.getenv('MISTRAL_MODEL', 'mistral-large-latest'),
        ),
        security=SecurityConfig(
            max_query_length=_env_int('MAX_QUERY_LENGTH', 10000),
        ),
        default_backend=os.getenv('DEFAULT_BACKEND', 'postgres'),
        generation_timeout=_env_float('GENERATION_TIMEOUT_SECONDS', 30.0),
        execution_timeout=query_timeout,
        log_level=os.getenv('LOG_LEVEL', 'INFO'),
    )
