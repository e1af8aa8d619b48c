"""
Application Configuration Module.

Production-grade configuration with:
- Pydantic Settings v2
- Environment variable support
- Secure secret handling (never logged)
- Validation

SECURITY: The identity-store service key is loaded from the environment and
must never appear in logs or responses.
"""

from typing import Optional, List
from functools import lru_cache

from pydantic import Field, field_validator, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict
import structlog

logger = structlog.get_logger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All sensitive values should be loaded from environment variables,
    never hardcoded.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ========================================================================
    # APPLICATION
    # ========================================================================

    app_name: str = "TRUSTCORE"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    testing: bool = Field(default=False, alias="TESTING")

    # ========================================================================
    # API
    # ========================================================================

    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    api_prefix: str = Field(default="/api/v1", alias="API_PREFIX")
    allowed_origins: List[str] = Field(
        default=["*"],
        alias="ALLOWED_ORIGINS",
    )
    cors_allow_headers: List[str] = Field(
        default=["authorization", "x-client-info", "apikey", "content-type"],
        alias="CORS_ALLOW_HEADERS",
    )

    # ========================================================================
    # IDENTITY STORE / ORACLES
    # ========================================================================

    oracle_backend: str = Field(
        default="memory",
        alias="ORACLE_BACKEND",
        description="memory (deterministic stand-ins) or http (identity store)",
    )
    identity_store_url: str = Field(
        default="http://localhost:54321",
        alias="IDENTITY_STORE_URL",
    )
    identity_store_service_key: Optional[str] = Field(
        default=None,
        alias="IDENTITY_STORE_SERVICE_KEY",
    )
    oracle_timeout_seconds: float = Field(default=10.0, alias="ORACLE_TIMEOUT_SECONDS")

    @field_validator("oracle_backend")
    @classmethod
    def validate_oracle_backend(cls, v: str) -> str:
        """Oracle backend is matched case-insensitively."""
        v = v.lower().strip()
        if v not in ("memory", "http"):
            raise ValueError(f"unknown oracle backend: {v}")
        return v

    # ========================================================================
    # IDENTITY VERIFICATION
    # ========================================================================

    identity_unreliable_retries: int = Field(
        default=2,
        alias="IDENTITY_UNRELIABLE_RETRIES",
        description="Extra attempts granted to clients known to drop requests",
    )
    identity_retry_delay_seconds: float = Field(
        default=0.3,
        alias="IDENTITY_RETRY_DELAY_SECONDS",
    )

    # ========================================================================
    # RATE LIMITING
    # ========================================================================

    rate_limit_backend: str = Field(default="memory", alias="RATE_LIMIT_BACKEND")
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        alias="REDIS_URL",
    )
    rate_limit_sweep_seconds: float = Field(default=600.0, alias="RATE_LIMIT_SWEEP_SECONDS")

    @field_validator("rate_limit_backend")
    @classmethod
    def validate_rate_limit_backend(cls, v: str) -> str:
        """Rate limit backend is matched case-insensitively."""
        v = v.lower().strip()
        if v not in ("memory", "redis"):
            raise ValueError(f"unknown rate limit backend: {v}")
        return v

    rate_limit_admin_max_attempts: int = Field(default=10, alias="RATE_LIMIT_ADMIN_MAX_ATTEMPTS")
    rate_limit_admin_window_seconds: int = Field(default=600, alias="RATE_LIMIT_ADMIN_WINDOW_SECONDS")
    rate_limit_registration_max_attempts: int = Field(
        default=10,
        alias="RATE_LIMIT_REGISTRATION_MAX_ATTEMPTS",
    )
    rate_limit_registration_window_seconds: int = Field(
        default=900,
        alias="RATE_LIMIT_REGISTRATION_WINDOW_SECONDS",
    )

    # ========================================================================
    # AUDIT
    # ========================================================================

    audit_retry_queue_size: int = Field(default=1000, alias="AUDIT_RETRY_QUEUE_SIZE")
    audit_flush_seconds: float = Field(default=30.0, alias="AUDIT_FLUSH_SECONDS")
    audit_max_write_attempts: int = Field(default=3, alias="AUDIT_MAX_WRITE_ATTEMPTS")

    # ========================================================================
    # SESSION CONTINUITY
    # ========================================================================

    session_heartbeat_seconds: float = Field(default=240.0, alias="SESSION_HEARTBEAT_SECONDS")
    session_debounce_seconds: float = Field(default=1.0, alias="SESSION_DEBOUNCE_SECONDS")
    session_refresh_attempts: int = Field(default=2, alias="SESSION_REFRESH_ATTEMPTS")
    session_refresh_backoff_seconds: float = Field(
        default=1.0,
        alias="SESSION_REFRESH_BACKOFF_SECONDS",
    )
    session_refresh_backoff_max_seconds: float = Field(
        default=4.0,
        alias="SESSION_REFRESH_BACKOFF_MAX_SECONDS",
    )
    session_storage_path: str = Field(
        default="~/.trustcore/session.json",
        alias="SESSION_STORAGE_PATH",
    )

    # ========================================================================
    # OBSERVABILITY
    # ========================================================================

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")  # json or console

    # Prometheus
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")
    metrics_path: str = Field(default="/metrics", alias="METRICS_PATH")

    # ========================================================================
    # COMPUTED PROPERTIES
    # ========================================================================

    @computed_field
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    @computed_field
    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment.lower() == "development"

    @property
    def cors_origins(self) -> List[str]:
        """Alias for allowed_origins."""
        return self.allowed_origins

    @property
    def host(self) -> str:
        """Alias for api_host."""
        return self.api_host

    @property
    def port(self) -> int:
        """Alias for api_port."""
        return self.api_port


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    settings = Settings()

    logger.info(
        "settings_loaded",
        environment=settings.environment,
        debug=settings.debug,
        backends={
            "oracle": settings.oracle_backend,
            "rate_limit": settings.rate_limit_backend,
        },
    )

    return settings


# Global settings instance
settings = get_settings()
