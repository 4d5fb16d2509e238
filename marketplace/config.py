import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

from marketplace.exceptions import ConfigurationError

# Load .env file with explicit UTF-8 encoding
load_dotenv(encoding="utf-8")

DEFAULT_DATABASE_URL = "sqlite:///./marketplace.db"


@dataclass(frozen=True)
class Settings:
    database_url: str
    webhook_secret: str | None
    payment_key_secret: str | None
    alert_webhook_url: str | None
    redis_url: str | None
    environment: str = "development"
    log_level: str = "INFO"
    alert_workers: int = 4
    alert_max_pending: int = 100
    escrow_sweep_cron: str = "*/5 * * * *"

    def require_webhook_secret(self) -> str:
        if not self.webhook_secret:
            raise ConfigurationError("RAZORPAY_WEBHOOK_SECRET is not configured")
        return self.webhook_secret


def _blank_to_none(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL") or DEFAULT_DATABASE_URL,
        webhook_secret=_blank_to_none(os.getenv("RAZORPAY_WEBHOOK_SECRET")),
        payment_key_secret=_blank_to_none(os.getenv("RAZORPAY_KEY_SECRET")),
        alert_webhook_url=_blank_to_none(os.getenv("SECURITY_WEBHOOK_URL")),
        redis_url=_blank_to_none(os.getenv("REDIS_URL")),
        environment=os.getenv("APP_ENV") or "development",
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        alert_workers=int(os.getenv("ALERT_WORKERS") or "4"),
        alert_max_pending=int(os.getenv("ALERT_MAX_PENDING") or "100"),
        escrow_sweep_cron=os.getenv("ESCROW_SWEEP_CRON") or "*/5 * * * *",
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
