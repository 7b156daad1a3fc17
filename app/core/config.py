# app/core/config.py - Storefront settings

from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./storefront.db"
    SECRET_KEY: str = "dev-secret-change-me"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    ALGORITHM: str = "HS256"
    ENVIRONMENT: str = "development"

    # Database client
    DB_LOG_LEVELS: Optional[str] = None  # comma separated, e.g. "query,warn,error"
    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 50
    TRANSACTION_MAX_WAIT_MS: int = 2000
    TRANSACTION_TIMEOUT_MS: int = 5000

    # Razorpay
    RAZORPAY_KEY_ID: Optional[str] = None
    RAZORPAY_KEY_SECRET: Optional[str] = None
    RAZORPAY_WEBHOOK_SECRET: Optional[str] = None
    CURRENCY: str = "INR"

    # Guest carts
    GUEST_SESSION_COOKIE: str = "guest_session_id"
    GUEST_SESSION_HEADER: str = "X-Session-Id"
    GUEST_SESSION_MAX_AGE: int = 60 * 60 * 24 * 30  # 30 days

    # Admin console, disabled until both are set
    ADMIN_ID: Optional[str] = None
    ADMIN_PASSWORD: Optional[str] = None
    ADMIN_TOKEN_EXPIRE_MINUTES: int = 120

    PRODUCTS_PAGE_SIZE: int = 24

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    @property
    def db_log_levels(self) -> List[str]:
        if self.DB_LOG_LEVELS:
            return [level.strip() for level in self.DB_LOG_LEVELS.split(",") if level.strip()]
        if self.ENVIRONMENT == "development":
            return ["query", "warn", "error"]
        return ["error"]

settings = Settings()
