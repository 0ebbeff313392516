"""
Environment-aware configuration settings for the automation engine.

Supports dev, test, and prod environments with appropriate defaults.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported deployment environments."""

    DEV = "dev"
    TEST = "test"
    PROD = "prod"


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis server hostname")
    port: int = Field(default=6379, description="Redis server port")
    db: int = Field(default=0, description="Redis database number")
    password: Optional[str] = Field(default=None, description="Redis password")
    max_connections: int = Field(default=50, description="Maximum connection pool size")
    socket_timeout: float = Field(default=10.0, description="Socket timeout (must be > stream_block_ms/1000 + 3)")
    socket_connect_timeout: float = Field(default=5.0, description="Connection timeout")

    @property
    def url(self) -> str:
        """Generate Redis connection URL."""
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class PostgresSettings(BaseSettings):
    """PostgreSQL connection settings."""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="PostgreSQL server hostname")
    port: int = Field(default=5432, description="PostgreSQL server port")
    database: str = Field(default="automation_engine", description="Database name")
    user: str = Field(default="postgres", description="Database user")
    password: str = Field(default="postgres", description="Database password")
    pool_size: int = Field(default=10, description="Connection pool size")
    max_overflow: int = Field(default=20, description="Max overflow connections")
    pool_timeout: float = Field(default=10.0, description="Pool timeout in seconds (fail fast)")

    @property
    def url(self) -> str:
        """Generate PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    @property
    def sync_url(self) -> str:
        """Generate synchronous PostgreSQL connection URL for migrations."""
        return (
            f"postgresql://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class RetrySettings(BaseSettings):
    """Default retry policy for action handlers that do not declare one."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(default=1, ge=1, description="Total attempts per action step")
    initial_delay: float = Field(default=1.0, description="Initial retry delay (seconds)")
    max_delay: float = Field(default=30.0, description="Maximum retry delay (seconds)")
    backoff_factor: float = Field(default=2.0, description="Exponential backoff base")
    jitter: bool = Field(default=True, description="Add jitter to retry delays")


class EvaluatorSettings(BaseSettings):
    """
    Evaluator limits.

    The action timeout applies to a single handler attempt; the workflow
    timeout bounds a whole compiled-tree walk including retries.
    """

    model_config = SettingsConfigDict(env_prefix="EVALUATOR_")

    default_action_timeout_ms: int = Field(default=10_000, ge=1, description="Per-attempt action timeout")
    workflow_timeout: float = Field(default=30.0, gt=0, description="Whole-run timeout (seconds)")
    max_steps: int = Field(default=500, ge=1, description="Maximum branches + action steps visited per run")


class DispatcherSettings(BaseSettings):
    """Trigger dispatcher and event ingress settings."""

    model_config = SettingsConfigDict(env_prefix="DISPATCHER_")

    concurrency: int = Field(default=16, ge=1, description="Max concurrent background dispatches")
    max_workflows_per_event: int = Field(default=100, ge=1, description="Cap on workflows evaluated per event")
    idempotency_ttl: int = Field(default=7 * 24 * 3600, description="Idempotency key retention (seconds)")
    graceful_shutdown_timeout: float = Field(default=30.0, description="Wait for in-flight dispatches on shutdown")

    # Redis Stream ingress
    consume_event_stream: bool = Field(default=True, description="Start the Redis Stream event consumer")
    event_stream: str = Field(default="automation:stream:events", description="Event ingress stream key")
    command_stream: str = Field(default="automation:stream:commands", description="Platform command stream key")
    consumer_group: str = Field(default="automation-dispatchers", description="Consumer group name")
    stream_block_ms: int = Field(default=5000, description="XREADGROUP block time in ms (must be < socket_timeout)")
    stream_max_length: int = Field(default=10000, description="Approximate MAXLEN for command stream")
    stale_claim_interval: float = Field(default=30.0, description="Seconds between stale message claims")
    stale_min_idle_ms: int = Field(default=120_000, description="Idle time before a pending event is reclaimed")


class HttpActionSettings(BaseSettings):
    """Settings for the built-in HTTP_REQUEST action."""

    model_config = SettingsConfigDict(env_prefix="HTTP_ACTION_")

    default_timeout_ms: int = Field(default=30_000, description="Default request timeout")
    max_timeout_ms: int = Field(default=300_000, description="Maximum configurable request timeout")
    max_retry_attempts: int = Field(default=5, description="Upper bound for retryAttempts")
    env_whitelist: dict[str, str] = Field(
        default_factory=dict,
        description="Values exposed to {{ env.NAME }} templates (JSON object)",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        case_sensitive=False,  # REDIS_HOST and redis_host both work
        extra="ignore",        # Ignore unknown environment variables
    )

    # Application
    app_name: str = Field(default="Workflow Automation Engine")
    environment: Environment = Field(default=Environment.DEV)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Sub-settings
    redis: RedisSettings = Field(default_factory=RedisSettings)
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    evaluator: EvaluatorSettings = Field(default_factory=EvaluatorSettings)
    dispatcher: DispatcherSettings = Field(default_factory=DispatcherSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    http_action: HttpActionSettings = Field(default_factory=HttpActionSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str | Environment) -> Environment:
        """Validate and convert environment string to enum."""
        if isinstance(v, Environment):
            return v
        return Environment(v.lower())

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == Environment.DEV

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TEST

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PROD


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
