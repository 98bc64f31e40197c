# ============================================================================
# EpicRefine - Application Configuration
# ============================================================================
"""
Application configuration module using Pydantic Settings.

This module defines all configuration parameters for EpicRefine, including:
- Database connection and pool settings
- OpenAI/LLM configuration
- Phase derivation thresholds
- Message retention (purge) defaults

Environment Variables:
    Every field can be overridden by an environment variable of the same
    name (case-insensitive) or by a .env file in the working directory.

Usage:
    from epicrefine.config import settings
    url = settings.database_url
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # =========================================================================
    # GENERAL
    # =========================================================================
    debug: bool = Field(default=False, description="Enable SQL echo & dev helpers")
    log_level: str = Field(default="INFO", description="Root log level for commands")

    # =========================================================================
    # DATABASE
    # =========================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/epicrefine.db",
        description="SQLAlchemy async database URL",
    )
    db_pool_size: int = Field(default=20, description="PostgreSQL pool size")
    db_max_overflow: int = Field(default=40, description="PostgreSQL pool overflow")
    db_pool_recycle: int = Field(default=3600, description="Recycle connections after N seconds")

    # =========================================================================
    # OPENAI/LLM CONFIGURATION
    # =========================================================================
    openai_api_key: Optional[str] = Field(default=None, description="LLM API key")
    openai_model: str = Field(default="gpt-4o-mini", description="LLM model name")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="LLM base URL")
    openai_verify_ssl: bool = Field(default=True, description="Verify SSL for LLM requests")
    openai_timeout: float = Field(default=60.0, description="Timeout (s) for LLM requests")
    openai_max_retries: int = Field(default=3, description="Retry count for LLM requests")
    openai_temperature: float = Field(default=0.7, description="Sampling temperature")
    openai_max_tokens: int = Field(default=2000, description="Max completion tokens")
    llm_call_timeout: float = Field(
        default=120.0,
        description="Upper bound (s) the workflow waits for one LLM completion",
    )

    # =========================================================================
    # PHASE DERIVATION
    # =========================================================================
    phase_strategy_threshold: int = Field(default=30, description="0–100, STRATEGY from this score")
    phase_test_planning_threshold: int = Field(default=70, description="0–100, TEST_PLANNING from this score")

    # =========================================================================
    # RETENTION
    # =========================================================================
    purge_preview_limit: int = Field(default=5, description="Delete ids echoed in purge summaries")
    purge_keep_last_user: bool = Field(
        default=False, description="Keep the USER turn before the last ASSISTANT turn"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# Global settings instance (imported elsewhere)
settings = Settings()
