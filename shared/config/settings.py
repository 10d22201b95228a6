"""
Settings Module
===============

Pydantic-based configuration with environment variable loading.

Pipeline thresholds live in `PipelineSettings` (PIPELINE_* variables) so
that the safety limits of the review, arbitration and release stages are
visible in one place.

Version: 0.1.0
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LLMProvider(str, Enum):
    """Supported LLM providers."""

    CLAUDE = "claude"


class PostgresSettings(BaseSettings):
    """PostgreSQL database configuration."""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = "localhost"
    port: int = 5432
    user: str = "factline"
    password: SecretStr = SecretStr("factline_dev_password")
    db: str = "factline"

    # Full URL override (DATABASE_URL), e.g. sqlite+aiosqlite:// for local runs
    url_override: str | None = Field(default=None, alias="DATABASE_URL")

    pool_size: int = 10
    max_overflow: int = 20

    @property
    def async_url(self) -> str:
        """Generate async SQLAlchemy connection URL."""
        if self.url_override:
            return self.url_override
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.db}"


class ClaudeSettings(BaseSettings):
    """Anthropic Claude API configuration."""

    model_config = SettingsConfigDict(env_prefix="CLAUDE_")

    api_key: SecretStr = Field(
        default=SecretStr(""),
        alias="ANTHROPIC_API_KEY",
    )
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096


class LLMSettings(BaseSettings):
    """LLM provider configuration."""

    model_config = SettingsConfigDict(env_prefix="LLM_")

    provider: LLMProvider = LLMProvider.CLAUDE
    temperature: float = 0.0
    max_retries: int = 3
    timeout_seconds: int = 120

    claude: ClaudeSettings = Field(default_factory=ClaudeSettings)


class StageLimits(BaseSettings):
    """Rate and concurrency limits for a single drainer stage."""

    requests_per_window: int = 30
    window_seconds: float = 60.0
    concurrency: int = 2
    batch_size: int = 10


class PipelineSettings(BaseSettings):
    """Thresholds and limits for the fact pipeline."""

    model_config = SettingsConfigDict(env_prefix="PIPELINE_")

    # Validator
    min_quote_length: int = 5
    low_confidence_warning: float = 0.7
    max_free_text_value_length: int = 64
    max_regex_subject_length: int = 10_000

    # Composer
    blocked_domains: list[str] = Field(
        default_factory=lambda: ["heartbeat", "test", "synthetic", "debug"]
    )

    # Reviewer
    auto_approve_confidence: float = 0.95
    grace_approve_confidence: float = 0.90
    review_grace_hours: float = 24.0
    automated_actor: str = "system:auto-approver"

    # Arbiter
    arbiter_min_confidence: float = 0.8
    arbiter_min_rule_confidence: float = 0.85

    # Retry / dead letter
    max_attempts: int = 3
    retry_min_wait_seconds: float = 1.0
    retry_max_wait_seconds: float = 30.0
    call_timeout_seconds: float = 120.0

    # Drainer idle backoff
    idle_backoff_initial_seconds: float = 1.0
    idle_backoff_max_seconds: float = 60.0
    idle_backoff_multiplier: float = 2.0

    # Per-stage limits
    extract: StageLimits = Field(
        default_factory=lambda: StageLimits(requests_per_window=10, concurrency=2, batch_size=5)
    )
    compose: StageLimits = Field(default_factory=StageLimits)
    review: StageLimits = Field(
        default_factory=lambda: StageLimits(requests_per_window=120, batch_size=50)
    )
    arbitrate: StageLimits = Field(default_factory=StageLimits)
    release: StageLimits = Field(
        default_factory=lambda: StageLimits(requests_per_window=6, concurrency=1, batch_size=100)
    )


class CORSSettings(BaseSettings):
    """CORS configuration."""

    model_config = SettingsConfigDict(env_prefix="CORS_")

    origins: str = "http://localhost:3000"
    allow_credentials: bool = True

    @property
    def origins_list(self) -> list[str]:
        """Parse origins string into list."""
        return [o.strip() for o in self.origins.split(",") if o.strip()]


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables with sensible defaults.
    Use the global `settings` singleton or call `get_settings()`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # General
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: LogLevel = LogLevel.INFO
    port: int = Field(default=8010, alias="FACT_PIPELINE_PORT")

    # Database
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)

    # LLM configuration
    llm: LLMSettings = Field(default_factory=LLMSettings)

    # Pipeline
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)

    # Drainer
    run_drainer: bool = Field(default=False, alias="RUN_DRAINER")

    cors: CORSSettings = Field(default_factory=CORSSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Ensure log level is uppercase."""
        if isinstance(v, str):
            return LogLevel(v.upper())
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        """Check if running in test mode."""
        return self.environment == Environment.TESTING


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Application settings singleton.
    """
    return Settings()
