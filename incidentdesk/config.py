"""IncidentDesk configuration loaded from environment variables."""

from __future__ import annotations

import json
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./incidentdesk.db",
        alias="DATABASE_URL",
    )
    auto_create_schema: bool = Field(default=True, alias="AUTO_CREATE_SCHEMA")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    cors_origins: str = Field(default='["http://localhost:3000"]', alias="CORS_ORIGINS")
    app_env: str = Field(default="development", alias="APP_ENV")
    app_base_url: str = Field(default="http://localhost:3000", alias="APP_BASE_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Notifications — Email (Resend)
    resend_api_key: str = Field(default="", alias="RESEND_API_KEY")
    notification_from_email: str = Field(default="alerts@incidentdesk.io", alias="NOTIFICATION_FROM_EMAIL")

    # Notifications — SMS gateway webhook
    sms_webhook_url: str = Field(default="", alias="SMS_WEBHOOK_URL")
    sms_webhook_token: str = Field(default="", alias="SMS_WEBHOOK_TOKEN")
    notification_timeout_seconds: float = Field(default=15.0, alias="NOTIFICATION_TIMEOUT_SECONDS")

    # Escalation
    default_escalation_timeout_minutes: int = Field(default=10, alias="DEFAULT_ESCALATION_TIMEOUT_MINUTES")
    escalation_poll_interval_seconds: int = Field(default=30, alias="ESCALATION_POLL_INTERVAL_SECONDS")
    escalation_batch_size: int = Field(default=20, alias="ESCALATION_BATCH_SIZE")
    # A claimed follow-up still running after this long is treated as lost and claimed again.
    follow_up_lease_seconds: int = Field(default=900, alias="FOLLOW_UP_LEASE_SECONDS")

    # Unread cache
    unread_cache_ttl_seconds: int = Field(default=300, alias="UNREAD_CACHE_TTL_SECONDS")
    redis_url: str = Field(default="", alias="REDIS_URL")

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() in {"production", "prod"}

    @property
    def cors_origins_list(self) -> list[str]:
        raw = (self.cors_origins or "").strip()
        if not raw:
            return []

        # Supports JSON list format and comma-separated format.
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
                if isinstance(parsed, list):
                    return [str(origin).strip() for origin in parsed if str(origin).strip()]
            except json.JSONDecodeError:
                pass

        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
