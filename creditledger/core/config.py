"""
Application configuration.
All settings are loaded from environment variables.
Use env.example as a reference for required variables.
"""
import json

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    IMPORTANT: Secrets have no defaults - they MUST be set in .env file.
    """

    # ===========================================
    # APPLICATION
    # ===========================================
    app_env: str = "local"
    # CORS: comma-separated origins. Empty = built-in default list.
    cors_origins: str = ""

    # ===========================================
    # DATABASE
    # ===========================================
    database_url: str  # Required, no default

    # ===========================================
    # REDIS & CELERY
    # ===========================================
    redis_url: str = "redis://localhost:6379/0"
    celery_broker_url: str = "redis://localhost:6379/1"
    celery_result_backend: str = "redis://localhost:6379/2"

    # ===========================================
    # LEDGER
    # ===========================================
    # Shared secret for the per-account integrity digest and for reconciliation
    # verification tokens. Detection only: whoever can read it can re-sign records.
    ledger_integrity_secret: str  # Required, no default
    ledger_max_write_attempts: int = 3
    idempotency_backend: str = "sql"  # sql, redis, memory
    transaction_log_backend: str = "sql"  # sql, file
    transaction_log_dir: str = "credit-logs"

    # ===========================================
    # LIGHTNING PAYMENTS (LNbits)
    # ===========================================
    lnbits_url: str  # Required, no default
    lnbits_api_key: str  # Required, no default (invoice key)
    lnbits_timeout: float = 10.0
    invoice_memo: str = "Payment for video generation"
    invoice_expiry_seconds: int = 600
    payment_poll_interval_seconds: float = 5.0

    # ===========================================
    # RECONCILIATION
    # ===========================================
    reconcile_max_attempts: int = 10
    reconcile_base_delay_seconds: float = 1.0
    reconcile_delay_step_seconds: float = 0.5
    reconcile_max_workers: int = 4
    reconcile_lookback_hours: int = 24

    # ===========================================
    # VIDEO GENERATION (Luma Dream Machine)
    # ===========================================
    luma_api_key: str  # Required, no default
    luma_api_url: str = "https://api.lumalabs.ai/dream-machine/v1"
    luma_timeout: float = 30.0
    generation_poll_interval_seconds: float = 2.0
    asset_probe_attempts: int = 3
    asset_probe_delay_seconds: float = 0.5
    asset_probe_timeout: float = 10.0
    default_generation_model: str = "ray-2"
    # Fee per model in smallest payment unit (sats). JSON object.
    generation_fees: str = '{"ray-2": 2000, "ray-1-6": 1000, "photon-1": 500, "photon-flash-1": 300}'
    # Recovery sweep: unsubmitted rows older than the grace period are failed (and refunded
    # when their debit landed); watched rows untouched for watch_stale seconds are re-enqueued.
    generation_unsubmitted_grace_seconds: int = 300
    generation_watch_stale_seconds: int = 3600
    generation_recovery_batch_size: int = 100

    # ===========================================
    # ADMIN API
    # ===========================================
    admin_api_key: str | None = None  # Optional, required for /credits/*/repair

    # ===========================================
    # CIRCUIT BREAKER
    # ===========================================
    cb_failure_threshold: int = 5
    cb_open_seconds: int = 30
    circuit_breaker_storage: str = "memory"  # memory, redis

    # ===========================================
    # LOGGING
    # ===========================================
    log_level: str = "INFO"
    log_file: str | None = None
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    @field_validator("ledger_integrity_secret")
    @classmethod
    def validate_integrity_secret(cls, v: str) -> str:
        """Ensure the ledger secret is reasonably long."""
        if len(v) < 16:
            raise ValueError("ledger_integrity_secret must be at least 16 characters")
        if v in ("changeme", "secret", "password", "animal-sunset"):
            raise ValueError("ledger_integrity_secret is too weak, please change it")
        return v

    @field_validator("lnbits_url")
    @classmethod
    def normalize_lnbits_url(cls, v: str) -> str:
        """Ensure URL has a protocol prefix."""
        v = v.strip().rstrip("/")
        if v and not v.startswith("http"):
            v = f"https://{v}"
        return v

    @field_validator("generation_fees")
    @classmethod
    def validate_generation_fees(cls, v: str) -> str:
        """Fees must be a JSON object of non-negative integers."""
        try:
            raw = json.loads(v)
        except json.JSONDecodeError as e:
            raise ValueError(f"generation_fees is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise ValueError("generation_fees must be a JSON object")
        for model, fee in raw.items():
            if not isinstance(fee, int) or isinstance(fee, bool) or fee < 0:
                raise ValueError(f"generation fee for {model!r} must be a non-negative integer")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
