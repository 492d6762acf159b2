"""
Configuration
=============

Environment-driven settings for the relay.

Only the application wiring reads these; components receive the values
they need as constructor arguments.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List, Optional

ENVIRONMENTS = {"development", "staging", "production", "test"}
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


class Settings(BaseSettings):
    """
    Every field maps to the upper-cased environment variable of the same
    name (or a `.env` entry). All fields have defaults so the package
    imports in a bare environment.
    """

    # ========== Application ==========
    app_name: str = Field(default="triage-relay", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=3000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/triage_relay",
        description="Async SQLAlchemy URL for the idempotency store"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== HubSpot Webhook ==========
    hubspot_webhook_token: Optional[str] = Field(
        default=None,
        description="Shared secret expected in the X-Webhook-Token header"
    )
    hubspot_portal_base_url: str = Field(
        default="https://app.hubspot.com",
        description="Base URL used to build ticket links"
    )

    # ========== Primary Provider (local Ollama) ==========
    local_llm_url: str = Field(
        default="http://localhost:11434",
        description="Ollama base URL"
    )
    local_llm_model: str = Field(default="llama3.1:8b", description="Local model name")
    local_llm_token: Optional[str] = Field(
        default=None,
        description="Optional bearer token for the local LLM gateway"
    )
    cf_access_client_id: Optional[str] = Field(
        default=None,
        description="Cloudflare Access service token client ID"
    )
    cf_access_client_secret: Optional[str] = Field(
        default=None,
        description="Cloudflare Access service token client secret"
    )
    local_llm_timeout_seconds: float = Field(
        default=9.0,
        description="Timeout for the local LLM call; must leave room for the fallback",
        ge=1.0,
        le=10.0
    )
    local_llm_temperature: float = Field(default=0.2, ge=0.0, le=1.0)

    # ========== Fallback Provider (Groq) ==========
    groq_api_key: Optional[str] = Field(default=None, description="Groq API key")
    groq_base_url: str = Field(
        default="https://api.groq.com/openai/v1",
        description="Groq OpenAI-compatible endpoint"
    )
    groq_model: str = Field(default="llama-3.3-70b-versatile", description="Groq model name")
    groq_timeout_seconds: float = Field(
        default=15.0,
        description="Timeout for the fallback LLM call",
        ge=1.0,
        le=60.0
    )
    groq_temperature: float = Field(default=0.2, ge=0.0, le=1.0)

    # ========== Generation & Repair ==========
    llm_max_tokens: int = Field(
        default=1000,
        description="Max tokens for triage generation",
        ge=1,
        le=8000
    )
    max_repair_attempts: int = Field(
        default=1,
        description="Corrective re-prompts allowed after a contract violation",
        ge=0,
        le=3
    )

    # ========== Idempotency Store ==========
    idempotency_retention_days: int = Field(
        default=7,
        description="Days to keep processed-ticket records",
        ge=1
    )
    retention_sweep_interval_hours: int = Field(
        default=24,
        description="Hours between retention sweeps",
        ge=1
    )

    # ========== Notifier (Slack) ==========
    slack_webhook_url: Optional[str] = Field(
        default=None,
        description="Slack webhook URL for triage notifications"
    )
    slack_channel: str = Field(
        default="#support-triage",
        description="Slack channel for triage notifications"
    )
    slack_timeout_seconds: float = Field(
        default=5.0,
        description="Per-attempt timeout for Slack webhook posts",
        ge=0.1,
        le=30
    )
    slack_max_retries: int = Field(default=3, ge=1, le=10)

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ENVIRONMENTS:
            raise ValueError(f"environment must be one of {sorted(ENVIRONMENTS)}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        if v.upper() not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(LOG_LEVELS)}")
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings; also the FastAPI dependency for the webhook."""
    return Settings()


settings = get_settings()
