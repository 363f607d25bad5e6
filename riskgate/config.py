"""
RiskGate Configuration.

Pydantic Settings v2 — loads from .env, environment variables.

Policy weights and thresholds do NOT live here; they belong to the
jurisdiction's PolicySnapshot. These settings cover runtime behaviour only.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ──────────────────────────────────────────────────────
    app_name: str = "RiskGate"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # ── Logging ───────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="console", alias="LOG_FORMAT")

    # ── Orchestration ─────────────────────────────────────────────────────
    source_timeout_seconds: float = Field(default=5.0, alias="SOURCE_TIMEOUT_SECONDS")
    detector_timeout_seconds: float = Field(default=2.0, alias="DETECTOR_TIMEOUT_SECONDS")
    overall_deadline_seconds: float = Field(default=10.0, alias="OVERALL_DEADLINE_SECONDS")
    fan_in_grace_seconds: float = Field(
        default=0.05, alias="FAN_IN_GRACE_SECONDS",
        description="Slack added to the fan-in bound before pending tasks are cancelled",
    )

    # ── Circuit breaker (per source) ──────────────────────────────────────
    breaker_failure_threshold: int = Field(default=5, alias="BREAKER_FAILURE_THRESHOLD")
    breaker_window_seconds: float = Field(default=60.0, alias="BREAKER_WINDOW_SECONDS")
    breaker_recovery_seconds: float = Field(default=30.0, alias="BREAKER_RECOVERY_SECONDS")

    # ── Result cache ──────────────────────────────────────────────────────
    cache_ttl_seconds: float = Field(default=900.0, alias="CACHE_TTL_SECONDS")
    cache_max_ttl_seconds: float = Field(default=3600.0, alias="CACHE_MAX_TTL_SECONDS")
    cache_max_entries: int = Field(default=10_000, alias="CACHE_MAX_ENTRIES")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # ── Audit ─────────────────────────────────────────────────────────────
    audit_retry_attempts: int = Field(default=3, alias="AUDIT_RETRY_ATTEMPTS")
    audit_retry_base_delay: float = Field(default=0.1, alias="AUDIT_RETRY_BASE_DELAY")
    audit_retry_max_delay: float = Field(default=2.0, alias="AUDIT_RETRY_MAX_DELAY")

    # ── Batch ─────────────────────────────────────────────────────────────
    batch_concurrency: int = Field(default=5, alias="BATCH_CONCURRENCY")

    # ── Policy ────────────────────────────────────────────────────────────
    policy_dir: str = Field(default="config/policies", alias="POLICY_DIR")
    policy_cache_ttl_seconds: float = Field(default=300.0, alias="POLICY_CACHE_TTL_SECONDS")
    policy_timeout_seconds: float = Field(
        default=2.0, alias="POLICY_TIMEOUT_SECONDS",
        description="Upper bound on the policy fetch; also capped by the source budget",
    )


settings = Settings()
