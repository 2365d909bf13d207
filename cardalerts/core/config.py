from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional



class Settings(BaseSettings):
    # -----------------------------
    # Database
    # -----------------------------
    DATABASE_URL: str
    SQL_ECHO: bool = False

    # -----------------------------
    # IMAP mailbox (one account per user)
    # -----------------------------
    IMAP_HOST: Optional[str] = None
    IMAP_PORT: int = 993
    IMAP_SECURE: bool = True
    IMAP_USER: Optional[str] = None
    IMAP_PASSWORD: Optional[str] = None
    IMAP_MAILBOX: str = "INBOX"
    IMAP_TIMEOUT: int = 30

    # -----------------------------
    # Trigger surface
    # -----------------------------
    EMAIL_INGEST_SECRET: Optional[str] = None
    DEFAULT_USER_ID: Optional[str] = None

    # -----------------------------
    # Alert filters / extraction
    # -----------------------------
    EMAIL_SYNC_FROM: str = ""
    EMAIL_SYNC_SUBJECT: str = ""
    DEFAULT_CURRENCY: str = "ARS"
    BUSINESS_TIMEZONE: str = "America/Argentina/Buenos_Aires"
    # last4 -> "credit" | "debit"; unmapped cards are credit
    CARD_PAYMENT_TYPES: dict[str, str] = {}

    # -----------------------------
    # Pipeline limits
    # -----------------------------
    SYNC_DAYS: int = 14
    SYNC_LIMIT: int = 50
    PROMOTE_LIMIT: int = 50
    PROMOTE_MAX_LIMIT: int = 200
    PROMOTE_TIME_BUDGET_SECONDS: float = 25.0
    PROMOTE_FALLBACK_SCAN_LIMIT: int = 30
    PROMOTE_FALLBACK_WINDOW_HOURS: int = 24

    # -----------------------------
    # Message broker
    # -----------------------------
    REDIS_URL: str = "redis://localhost:6379/0"
    CELERY_BROKER_URL: Optional[str] = None
    CELERY_RESULT_BACKEND: Optional[str] = None
    SYNC_INTERVAL_SECONDS: int = 900
    PROMOTE_INTERVAL_SECONDS: int = 300

    # -----------------------------
    # App Environment
    # -----------------------------
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "info"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def broker_url(self) -> str:
        return self.CELERY_BROKER_URL or self.REDIS_URL

    @property
    def result_backend(self) -> str:
        return self.CELERY_RESULT_BACKEND or self.REDIS_URL


@lru_cache()
def get_settings() -> Settings:
    """Cached settings instance to avoid reloading .env repeatedly"""
    return Settings()


settings = get_settings()
