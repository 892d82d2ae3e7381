"""Application configuration using pydantic-settings."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="forbid",
    )

    # Application Configuration
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    debug: bool = True

    # Completion Service (OpenAI-compatible gateway)
    openrouter_api_key: str = Field(
        default="",
        description="API key for the OpenRouter completion gateway",
    )
    llm_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="Base URL of the OpenAI-compatible chat completions API",
    )
    llm_timeout_seconds: float = Field(
        default=60.0,
        description="Timeout for a single completion request",
    )
    llm_app_title: str = Field(
        default="Highlight Assistant",
        description="Application title sent to the gateway",
    )
    llm_http_referer: str = Field(
        default="http://localhost",
        description="HTTP referer sent to the gateway",
    )

    # Models
    default_model: str = Field(
        default="anthropic/claude-sonnet-4",
        description="Model used when a request and its session name none",
    )
    execution_model: str | None = Field(
        default=None,
        description="Model for structured execution; falls back to the session model",
    )

    # Conversation Stage
    conversation_temperature: float = 0.7
    conversation_max_tokens: int = 2000

    # Execution Stage
    execution_temperature: float = 0.3
    execution_max_tokens: int = 4000
    execution_max_attempts: int = Field(
        default=2,
        description="Attempts for structured execution (1 call + 1 retry)",
    )
    execution_retry_wait_seconds: float = Field(
        default=0.5,
        description="Pause before retrying a failed execution attempt",
    )

    # Context Window
    response_reserve_tokens: int = Field(
        default=2500,
        description="Tokens reserved for the model's response",
    )
    summary_max_tokens: int = Field(
        default=500,
        description="Upper bound for the synthetic summary of trimmed history",
    )
    token_estimator: Literal["chars", "tiktoken"] = Field(
        default="chars",
        description="Token estimation strategy",
    )
    tiktoken_encoding: str = "cl100k_base"

    # Turn handling
    turn_timeout_seconds: float | None = Field(
        default=180.0,
        description="Deadline for a whole chat turn; None disables it",
    )

    # Session Store
    session_store: Literal["memory", "postgres"] = "memory"
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_user: str = "highlights"
    postgres_password: str = "dev_password"
    postgres_db: str = "highlight_chat"
    postgres_min_pool_size: int = 2
    postgres_max_pool_size: int = 10

    @property
    def postgres_url(self) -> str:
        """Construct PostgreSQL connection URL."""
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Session locking
    lock_backend: Literal["local", "redis"] = "local"
    redis_url: str = Field(
        default="redis://localhost:6379",
        description="Redis connection URL for distributed session locks",
    )
    session_lock_timeout: int = Field(
        default=300,
        description="Seconds after which a held Redis session lock expires",
    )
    session_lock_blocking_timeout: int = Field(
        default=60,
        description="Seconds to wait for a busy Redis session lock",
    )

    # FastAPI Configuration
    fastapi_host: str = "0.0.0.0"
    fastapi_port: int = 8000
    fastapi_reload: bool = True
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"],
        description="Origins allowed to call the HTTP API",
    )

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


# Global settings instance
settings = Settings()
