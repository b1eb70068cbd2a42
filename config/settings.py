"""
Application settings loaded from environment variables.

Uses pydantic-settings for validation and type safety.
Keepa and Anthropic keys are optional at startup so the API can still serve
status reads; correlation jobs fail with a clear error when they are missing.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings.

    All values loaded from .env file or environment variables.
    Validation happens automatically on startup.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),  # Check current dir, then parent
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"  # Ignore extra env vars
    )

    # ===================
    # SUPABASE
    # ===================
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anon/public key"
    )
    supabase_service_key: Optional[str] = Field(
        None,
        description="Supabase service role key (background writes bypass RLS)"
    )

    # ===================
    # TABLES
    # ===================
    correlations_table: str = Field(
        default="asin_correlations",
        description="Approved seed/candidate associations"
    )
    jobs_table: str = Field(
        default="import_jobs",
        description="Correlation job status records"
    )
    users_table: str = Field(
        default="users",
        description="Owner profiles (custom matching prompt)"
    )
    tasks_table: str = Field(
        default="influencer_tasks",
        description="Owner tasks used to hide already-completed candidates"
    )

    # ===================
    # KEEPA (CATALOG LOOKUP)
    # ===================
    keepa_api_key: Optional[str] = Field(
        None,
        description="Keepa API key"
    )
    keepa_base_url: str = Field(
        default="https://api.keepa.com",
        description="Keepa API base URL"
    )
    keepa_domain: int = Field(
        default=1,
        ge=1,
        le=12,
        description="Keepa marketplace domain (1 = amazon.com)"
    )
    keepa_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=120,
        description="Per-request timeout for Keepa calls"
    )

    # ===================
    # ANTHROPIC (SIMILARITY JUDGE)
    # ===================
    anthropic_api_key: Optional[str] = Field(
        None,
        description="Anthropic API key"
    )
    judge_model: str = Field(
        default="claude-3-5-haiku-20241022",
        description="Claude model answering the YES/NO similarity question"
    )
    judge_max_tokens: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Max tokens for a judge answer"
    )
    judge_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=120,
        description="Timeout for one judge call (timeout counts as rejection)"
    )

    # ===================
    # CORRELATION PIPELINE
    # ===================
    catalog_batch_size: int = Field(
        default=100,
        ge=1,
        le=100,
        description="Identifiers per catalog lookup call (Keepa max is 100)"
    )
    similar_search_limit: int = Field(
        default=50,
        ge=50,
        le=10000,
        description="Results requested from the attribute search (Keepa minimum is 50)"
    )
    similar_candidate_cap: int = Field(
        default=30,
        ge=0,
        le=100,
        description="Maximum similar candidates sent to the judge per job"
    )
    judge_concurrency: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Judge calls awaited together in one window"
    )
    job_stale_after_minutes: int = Field(
        default=20,
        ge=1,
        le=1440,
        description="Minutes without updates before a running job is reported stale"
    )
    correlation_source_tag: str = Field(
        default="correlation-engine",
        description="Value written to the source column of every correlation"
    )

    # ===================
    # APP SETTINGS
    # ===================
    environment: str = Field(
        default="development",
        pattern="^(development|staging|production)$",
        description="Application environment"
    )
    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API host"
    )
    api_port: int = Field(
        default=8000,
        ge=1000,
        le=65535,
        description="API port"
    )

    # ===================
    # COMPUTED PROPERTIES
    # ===================
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @property
    def keepa_configured(self) -> bool:
        """Check if Keepa is configured."""
        return bool(self.keepa_api_key)

    @property
    def judge_configured(self) -> bool:
        """Check if the Claude judge is configured."""
        return bool(self.anthropic_api_key)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload.

    Returns:
        Settings: Application settings

    Raises:
        ValidationError: If required env vars are missing or invalid
    """
    return Settings()


# For convenient imports: from config.settings import settings
settings = get_settings()
