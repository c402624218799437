from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./vendor_billing.db"
    AUTO_CREATE_TABLES: bool = True

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # JWT Settings
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # App Settings
    APP_NAME: str = "Vendor Billing Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Email/SMTP Settings
    SMTP_HOST: str = "smtp.gmail.com"
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_EMAIL: str = ""  # Defaults to SMTP_USER
    SMTP_FROM_NAME: str = "Vendor Billing"

    # Frontend URL for email links
    FRONTEND_URL: str = "http://localhost:5173"

    # Razorpay Payment Gateway
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""  # Server-side only, never returned to clients
    PAYMENT_CURRENCY: str = "INR"
    PAYMENT_GATEWAY_TIMEOUT_SECONDS: float = 15.0

    # Subscriptions
    DEFAULT_PLAN_DURATION_DAYS: int = 365

    @field_validator('CORS_ORIGINS', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(',')]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin for origin in self.CORS_ORIGINS if origin]

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    @property
    def payment_gateway_configured(self) -> bool:
        key_id = self.RAZORPAY_KEY_ID or ""
        return bool(key_id and self.RAZORPAY_KEY_SECRET) and "your_razorpay" not in key_id

    @property
    def smtp_from_address(self) -> Optional[str]:
        return self.SMTP_FROM_EMAIL or self.SMTP_USER or None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True
