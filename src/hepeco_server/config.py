from typing import List, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ────────────────────────────────
    # 1. APP & ENVIRONMENT
    # ────────────────────────────────
    PROJECT_NAME: str = "Hepeco Digital API"
    ENVIRONMENT: str = "development"
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    CORS_ORIGINS: List[str] = ["*"]

    # ────────────────────────────────
    # 2. SECURITY
    # ────────────────────────────────
    ADMIN_TOKEN: Optional[str] = Field(
        default=None,
        description="Shared token required in X-Admin-Token for /api/admin routes",
    )
    WEBHOOK_SECRET: Optional[str] = Field(
        default=None,
        description="HMAC-SHA512 key for mobile-money webhook signatures",
    )
    QR_TAG_SECRET: str = "hepeco-qr"
    GENERATE_RATE_LIMIT: str = "20/minute"

    # ────────────────────────────────
    # 3. PAYMENTS
    # ────────────────────────────────
    MAX_PAYMENT_AMOUNT: int = 10_000_000
    PAYMENT_EXPIRY_SECONDS: int = 60 * 60
    DUPLICATE_WINDOW_SECONDS: float = 1.0

    # Fraud heuristics (business rules, not security guarantees)
    FRAUD_ROUND_MULTIPLE: int = 100_000
    FRAUD_ROUND_MINIMUM: int = 500_000
    FRAUD_SMALL_AMOUNT: int = 10_000
    FRAUD_MIN_AGE_SECONDS: int = 30
    FRAUD_MAX_ATTEMPTS: int = 3
    FRAUD_ATTEMPT_WINDOW_SECONDS: int = 60 * 60

    # ────────────────────────────────
    # 4. QUOTES
    # ────────────────────────────────
    DEFAULT_BASE_PRICE: int = 300_000

    # ────────────────────────────────
    # 5. GATEWAY
    # ────────────────────────────────
    GATEWAY_MODE: Literal["simulated", "http"] = "simulated"
    GATEWAY_URL: str = "http://127.0.0.1:9000"
    GATEWAY_TIMEOUT: float = 5.0
    GATEWAY_MAX_RETRIES: int = 3
    GATEWAY_MAX_RPS: int = 18
    SIMULATED_SUCCESS_RATE: float = 0.7
    SIMULATED_DELAY_SECONDS: float = 1.0

    class Config:
        case_sensitive = False
        env_prefix = "HEPECO_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


# Create singleton
settings = Settings()
