"""Application configuration using Pydantic settings."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True

    # API
    api_v1_prefix: str = "/api/v1"
    project_name: str = "Commerce Assistant API"
    version: str = "0.1.0"

    # Action configuration
    actions_config_path: str = "config/ai-assistant-actions.json"
    actions_config_watch: bool = False
    actions_config_watch_interval: float = 1.0  # seconds between mtime polls
    default_mode: Literal["b2c", "b2b"] = "b2c"
    mode_detection_enabled: bool = True  # Infer the mode when a request has none
    mode_detection_threshold: float = 0.6  # Minimum confidence to leave default_mode

    # Commerce backend (unified API middleware)
    commerce_api_url: str = "http://localhost:4000/commerce"
    commerce_api_timeout: float = 30.0

    # Streaming client
    stream_retry_attempts: int = 3
    stream_retry_delay: float = 1.0  # seconds, multiplied by attempt number

    # Customer authentication (storefront-issued JWTs)
    auth_url: str = "http://localhost:3000"  # Storefront URL, also the token issuer
    auth_jwks_url: str | None = None  # Defaults to {auth_url}/api/auth/jwks

    # Conversation
    max_conversation_history: int = 10

    # Rate limiting
    chat_rate_limit: str = "30/minute"

    # Error tracking (Sentry or GlitchTip)
    sentry_dsn: str | None = None

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",  # Next.js storefront
    ]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
