from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = Field(default="Courier", alias="APP_NAME")
    app_env: str = Field(default="local", alias="APP_ENV")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    database_url: str = Field(
        default="sqlite+pysqlite:///./courier.db",
        alias="DATABASE_URL",
    )
    autostart: bool = Field(default=True, alias="COURIER_AUTOSTART")

    # Delivery queue
    queue_concurrency: int = Field(default=3, ge=1, alias="QUEUE_CONCURRENCY")
    queue_tick_seconds: float = Field(default=1.0, gt=0, alias="QUEUE_TICK_SECONDS")
    queue_default_max_attempts: int = Field(default=3, ge=1, alias="QUEUE_DEFAULT_MAX_ATTEMPTS")
    queue_base_delay_ms: int = Field(default=1000, ge=0, alias="QUEUE_BASE_DELAY_MS")
    queue_max_delay_ms: int = Field(default=60_000, ge=0, alias="QUEUE_MAX_DELAY_MS")
    queue_send_timeout_seconds: float = Field(default=30.0, gt=0, alias="QUEUE_SEND_TIMEOUT_SECONDS")
    queue_sent_retention_seconds: int = Field(default=24 * 60 * 60, ge=0, alias="QUEUE_SENT_RETENTION_SECONDS")
    queue_dead_letter_retention_days: int = Field(default=7, ge=1, alias="QUEUE_DEAD_LETTER_RETENTION_DAYS")
    queue_cleanup_seconds: float = Field(default=300.0, gt=0, alias="QUEUE_CLEANUP_SECONDS")

    # Job scheduler
    scheduler_tick_seconds: float = Field(default=60.0, gt=0, alias="SCHEDULER_TICK_SECONDS")
    scheduler_timezone: str = Field(default="Asia/Riyadh", alias="SCHEDULER_TIMEZONE")
    scheduler_failure_threshold: int = Field(default=3, ge=1, alias="SCHEDULER_FAILURE_THRESHOLD")
    scheduler_execution_history: int = Field(default=100, ge=1, alias="SCHEDULER_EXECUTION_HISTORY")
    dedup_retention_days: int = Field(default=7, ge=1, alias="DEDUP_RETENTION_DAYS")

    # Delivery transport
    delivery_backend: str = Field(default="smtp", alias="DELIVERY_BACKEND")
    mail_from: str = Field(default="noreply@notifications.local", alias="MAIL_FROM")
    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int = Field(default=587, alias="SMTP_PORT")
    smtp_username: str | None = Field(default=None, alias="SMTP_USERNAME")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(default=True, alias="SMTP_USE_TLS")
    resend_api_key: str | None = Field(default=None, alias="RESEND_API_KEY")
    resend_base_url: str = Field(default="https://api.resend.com", alias="RESEND_BASE_URL")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
