"""
config/settings.py
Application settings loaded from environment variables.
Uses Pydantic BaseSettings for validation and type safety.
"""

from functools import lru_cache
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    APP_NAME: str = "Doctor Appointment Booking"
    APP_ENV: str = "development"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # ── Server ───────────────────────────────────────────────
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # ── Database ─────────────────────────────────────────────
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30

    # ── Redis ────────────────────────────────────────────────
    REDIS_URL: str = "redis://localhost:6379/0"

    # ── JWT ──────────────────────────────────────────────────
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 15

    # ── Razorpay ─────────────────────────────────────────────
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    RAZORPAY_WEBHOOK_SECRET: str = ""
    RAZORPAY_CALLBACK_URL: str = "http://localhost:8000/payments/callback"
    GATEWAY_CURRENCY: str = "INR"

    # ── Gateway resilience ───────────────────────────────────
    GATEWAY_TIMEOUT_SECONDS: float = 10.0
    GATEWAY_BREAKER_FAIL_MAX: int = 5
    GATEWAY_BREAKER_RESET_SECONDS: int = 60

    # ── Email ────────────────────────────────────────────────
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@doctorbooking.in"

    # ── Frontend ─────────────────────────────────────────────
    ALLOWED_ORIGINS: str = "http://localhost:3000"

    # ── Celery ───────────────────────────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"

    # ── Business Config ──────────────────────────────────────
    PAYMENT_TIMEOUT_MINUTES: int = 15
    SWEEP_INTERVAL_SECONDS: int = 300

    # ── Notification pipeline ────────────────────────────────
    NOTIFICATION_TOPIC: str = "appointment_notifications"
    NOTIFICATION_PARTITIONS: int = 3
    NOTIFICATION_CONSUMER_GROUP: str = "notification-service"
    NOTIFICATION_DLQ_GROUP: str = "notification-service-dlq"
    NOTIFICATION_MAX_ATTEMPTS: int = 4          # first try + 3 retries
    NOTIFICATION_RETRY_DELAY_SECONDS: float = 5.0
    NOTIFICATION_BLOCK_MS: int = 3000
    NOTIFICATION_BATCH_SIZE: int = 10
    OUTBOX_RELAY_INTERVAL_SECONDS: int = 60
    OUTBOX_RELAY_GRACE_SECONDS: int = 60

    @property
    def allowed_origins_list(self) -> List[str]:
        return [o.strip() for o in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance, call this everywhere."""
    return Settings()


settings = get_settings()
