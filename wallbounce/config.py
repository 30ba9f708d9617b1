"""Configuration settings for the wall-bounce engine."""

from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Deployment
    region: str = "us-east-1"
    log_level: str = "INFO"

    # Model invocation
    invoker: Literal["http", "offline"] = "http"
    gateway_url: str = "http://localhost:4000/v1"
    gateway_api_key: str | None = None
    default_models: list[str] = ["gpt-5", "claude-4", "gemini-2.5-pro"]
    temperature: float = 0.7
    max_tokens: int = 2048

    # Timeouts (seconds)
    invocation_timeout: float = 60.0
    phase_timeout: float = 120.0

    # Wall-bounce
    min_passes: int = 2
    max_passes: int = 3
    revision_threshold: int = 30
    fan_out_min_successes: int = 2
    severity_config_path: Path | None = None

    # Sessions
    session_ttl_seconds: int = 24 * 60 * 60
    cache_ttl_seconds: float = 30.0
    cache_capacity: int = 256
    max_history: int = 1000
    max_retries: int = 3
    retry_backoff_seconds: float = 0.1
    context_exchanges: int = 5

    # State store
    state_backend: Literal["memory", "redis", "sql"] = "memory"
    redis_url: str = "redis://localhost:16379/0"
    redis_key_prefix: str = "wallbounce:"
    db_host: str = "localhost"
    db_port: int = 15432
    db_name: str = "wallbounce"
    db_user: str = "wallbounce"
    db_password: str = "wallbounce"
    database_url_override: str | None = None

    # Rate limiting
    rate_limit_enabled: bool = False
    rate_limit_wait_seconds: int = 60
    publish_events: bool = False

    @property
    def database_url(self) -> str:
        """Async SQLAlchemy database URL."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    class Config:
        env_prefix = "WALLBOUNCE_"
        env_file = ".env"


# Global settings instance
settings = Settings()
