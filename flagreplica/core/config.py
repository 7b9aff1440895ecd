"""
Replica configuration using Pydantic Settings.
"""

from functools import lru_cache

from pydantic import Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .keys import DEFAULT_PREFIX


class RedisSettings(BaseSettings):
    """Redis configuration."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    url: RedisDsn = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    max_connections: int = Field(default=10, ge=1)


class ConsulSettings(BaseSettings):
    """Consul KV configuration."""

    model_config = SettingsConfigDict(env_prefix="CONSUL_")

    url: str = Field(default="http://localhost:8500", description="Consul HTTP API address")
    token: str | None = Field(default=None, description="ACL token")
    datacenter: str | None = Field(default=None)
    timeout: float = Field(default=10.0, gt=0)


class DynamoDBSettings(BaseSettings):
    """DynamoDB configuration. The table must already exist."""

    model_config = SettingsConfigDict(env_prefix="DYNAMODB_")

    table_name: str = Field(default="", description="Table with 'namespace' and 'key' string keys")
    region: str = Field(default="us-east-1")
    endpoint_url: str | None = Field(default=None, description="Custom endpoint (DynamoDB Local)")
    access_key: str | None = Field(default=None)
    secret_key: str | None = Field(default=None)


class BigSegmentSettings(BaseSettings):
    """Big Segment store configuration."""

    model_config = SettingsConfigDict(env_prefix="BIG_SEGMENTS_")

    backend: str | None = Field(
        default=None,
        description="Big Segment backend: redis, dynamodb, or unset to disable",
    )
    prefix: str = Field(default=DEFAULT_PREFIX)
    stale_after: float = Field(default=120.0, gt=0, description="Seconds")
    context_cache_size: int = Field(default=1000, ge=0)
    context_cache_time: float = Field(default=5.0, ge=0, description="Seconds")
    status_poll_interval: float = Field(default=5.0, ge=0, description="Seconds")


class Settings(BaseSettings):
    """Main replica settings."""

    model_config = SettingsConfigDict(
        env_prefix="REPLICA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    store_backend: str = Field(
        default="memory",
        description="Data store backend: memory, redis, consul, dynamodb",
    )
    prefix: str = Field(
        default=DEFAULT_PREFIX,
        description="Namespace prefix isolating this replica's keys",
    )
    cache_ttl: float | None = Field(
        default=15.0,
        description="Seconds to cache persistent store reads; 0 disables, unset caches forever",
    )
    cache_max_entries: int | None = Field(
        default=10000,
        ge=1,
        description="Most single items kept in the read cache; unset for no limit",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or text")

    # Nested settings
    redis: RedisSettings = Field(default_factory=RedisSettings)
    consul: ConsulSettings = Field(default_factory=ConsulSettings)
    dynamodb: DynamoDBSettings = Field(default_factory=DynamoDBSettings)
    big_segments: BigSegmentSettings = Field(default_factory=BigSegmentSettings)

    @field_validator("store_backend")
    @classmethod
    def validate_store_backend(cls, v: str) -> str:
        allowed = {"memory", "redis", "consul", "dynamodb"}
        if v not in allowed:
            raise ValueError(f"store_backend must be one of {allowed}")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in {"json", "text"}:
            raise ValueError("log_format must be json or text")
        return v

    @field_validator("cache_ttl")
    @classmethod
    def validate_cache_ttl(cls, v: float | None) -> float | None:
        if v is not None and v < 0:
            raise ValueError("cache_ttl must not be negative")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
