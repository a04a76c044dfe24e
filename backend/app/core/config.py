"""Application configuration settings.

All configuration values are loaded from environment variables (.env file).
No sensitive values should be hardcoded here.
"""

from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings

GATEWAY_ENVIRONMENTS = ("test", "live")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    PROJECT_NAME: str = "Membership Billing API"
    VERSION: str = "0.1.0"
    API_V1_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: list[str] = []

    # Document store: memory or sql
    DOCUMENT_STORE_BACKEND: str = "memory"

    # Database (when DOCUMENT_STORE_BACKEND=sql)
    DATABASE_URL: str = ""

    # Redis (Celery broker for renewal tasks)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Payment gateway
    # GATEWAY_ENV: test or live
    GATEWAY_ENV: str = "test"
    GATEWAY_ACCESS_TOKEN_TEST: str = ""
    GATEWAY_ACCESS_TOKEN_LIVE: str = ""
    GATEWAY_BASE_URL: str = "https://api.mercadopago.com"
    GATEWAY_TIMEOUT_SECONDS: float = 15.0
    GATEWAY_WEBHOOK_SECRET: Optional[str] = None

    # Payer normalization
    SANDBOX_LEGAL_ID: str = "12345678909"
    # TRANSFER_EMAIL_POLICY: synthetic or omit
    TRANSFER_EMAIL_POLICY: str = "synthetic"
    SYNTHETIC_EMAIL_DOMAIN: str = "example.com"

    # Checkout links
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    CHECKOUT_SUCCESS_URL: str = "http://localhost:3000/pay-success.html"
    CHECKOUT_PENDING_URL: str = "http://localhost:3000/pay.html"
    CHECKOUT_FAILURE_URL: str = "http://localhost:3000/pay.html"

    @field_validator("GATEWAY_ENV")
    @classmethod
    def validate_gateway_env(cls, v: str) -> str:
        env = v.strip().lower()
        if env not in GATEWAY_ENVIRONMENTS:
            raise ValueError(f"GATEWAY_ENV must be one of {GATEWAY_ENVIRONMENTS}, got {v!r}")
        return env

    @property
    def is_sandbox(self) -> bool:
        """Whether the gateway runs against test credentials."""
        return self.GATEWAY_ENV == "test"

    @property
    def gateway_access_token(self) -> str:
        """Access token matching the configured gateway environment."""
        token = self.GATEWAY_ACCESS_TOKEN_TEST if self.is_sandbox else self.GATEWAY_ACCESS_TOKEN_LIVE
        return (token or "").strip()

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


settings = Settings()
