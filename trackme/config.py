from dataclasses import dataclass
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


@dataclass(frozen=True, slots=True)
class PipelineConfig:
    """
    Tunables handed to every pipeline worker.

    Workers receive this object in their constructor and never read the
    global settings themselves.
    """

    # Queue claiming
    scan_claim_batch_size: int = 1
    parse_batch_size: int = 50
    ingest_batch_size: int = 50
    poll_interval_seconds: float = 10.0

    # Scan stage
    scan_max_messages: int = 500
    scan_fetch_batch_size: int = 50
    scan_inter_batch_delay_seconds: float = 0.1
    gmail_page_size: int = 100
    deep_scan_days: int = 365
    incremental_scan_days: int = 2
    token_refresh_lock_ttl_seconds: int = 30

    # Parse stage
    parse_strategy: str = "heuristic"
    heuristic_min_confidence: float = 0.6
    llm_min_confidence: float = 0.7
    default_currency: str = "INR"

    # Ingest stage
    merge_price_epsilon: float = 0.01

    # Notify stage
    notification_delay_seconds: float = 300.0

    # Reaper
    stale_job_timeout_seconds: int = 900
    max_job_attempts: int = 3

    # Outbound HTTP
    http_timeout_seconds: float = 30.0


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Supabase settings
    SUPABASE_URL: str
    SUPABASE_JWKS_URL: str | None = None
    SUPABASE_DB_URL: str
    SUPABASE_SERVICE_ROLE_KEY: str | None = None

    # Redis settings (token refresh locks)
    UPSTASH_REDIS_REST_URL: str | None = None
    UPSTASH_REDIS_REST_TOKEN: str | None = None

    # Gmail OAuth settings
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None
    GOOGLE_REDIRECT_URI: str | None = None

    # Firebase Cloud Messaging service account (raw JSON)
    GOOGLE_SERVICE_ACCOUNT_JSON: str | None = None

    # OpenAI settings
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_MAX_TOKENS: int = 300
    OPENAI_TEMPERATURE: float = 0.1
    OPENAI_MAX_RETRIES: int = 2

    ENCRYPTION_KEY: str | None = None
    HASHING_SECRET: str | None = None
    WEBHOOK_SECRET: str | None = None

    # =================================================================
    # PIPELINE SETTINGS
    # =================================================================
    PARSE_STRATEGY: str = "heuristic"  # heuristic | llm
    PARSE_BATCH_SIZE: int = 50
    INGEST_BATCH_SIZE: int = 50
    WORKER_POLL_INTERVAL_SECONDS: float = 10.0
    SCAN_MAX_MESSAGES: int = 500
    DEFAULT_CURRENCY: str = "INR"
    NOTIFICATION_DELAY_SECONDS: float = 300.0
    STALE_JOB_TIMEOUT_SECONDS: int = 900
    MAX_JOB_ATTEMPTS: int = 3
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # =================================================================
    # DATABASE POOL SETTINGS
    # =================================================================
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    DB_POOL_TIMEOUT: float = 30.0
    DB_POOL_MAX_IDLE: float = 600.0  # 10 minutes
    DB_POOL_MAX_LIFETIME: float = 3600.0  # 1 hour

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # derive sensible defaults if not provided
    def jwks_url(self) -> str:
        if self.SUPABASE_JWKS_URL:
            return self.SUPABASE_JWKS_URL
        base = self.SUPABASE_URL.rstrip("/")
        return f"{base}/auth/v1/.well-known/jwks.json"

    def gmail_redirect_uri(self) -> str:
        """Get Gmail OAuth redirect URI with fallback."""
        if self.GOOGLE_REDIRECT_URI:
            return self.GOOGLE_REDIRECT_URI
        # Default for local development
        return "http://localhost:8000/integrations/google/callback"

    def redis_configured(self) -> bool:
        return bool(self.UPSTASH_REDIS_REST_URL and self.UPSTASH_REDIS_REST_TOKEN)

    def get_db_pool_config(self) -> dict:
        """
        Get database pool configuration.
        Worker processes hold few connections; the API keeps the configured size.
        """
        config = {
            "min_size": self.DB_POOL_MIN_SIZE,
            "max_size": self.DB_POOL_MAX_SIZE,
            "timeout": self.DB_POOL_TIMEOUT,
            "max_idle": self.DB_POOL_MAX_IDLE,
            "max_lifetime": self.DB_POOL_MAX_LIFETIME,
        }

        if self.environment == "development":
            config.update({"min_size": 1, "max_size": 5, "timeout": 15.0})

        return config

    def pipeline_config(self) -> PipelineConfig:
        """Build the immutable worker configuration from environment settings."""
        return PipelineConfig(
            parse_batch_size=self.PARSE_BATCH_SIZE,
            ingest_batch_size=self.INGEST_BATCH_SIZE,
            poll_interval_seconds=self.WORKER_POLL_INTERVAL_SECONDS,
            scan_max_messages=self.SCAN_MAX_MESSAGES,
            parse_strategy=self.PARSE_STRATEGY.strip().lower(),
            default_currency=self.DEFAULT_CURRENCY.upper(),
            notification_delay_seconds=self.NOTIFICATION_DELAY_SECONDS,
            stale_job_timeout_seconds=self.STALE_JOB_TIMEOUT_SECONDS,
            max_job_attempts=self.MAX_JOB_ATTEMPTS,
            http_timeout_seconds=self.HTTP_TIMEOUT_SECONDS,
        )


settings = Settings()
