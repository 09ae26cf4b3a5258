from pydantic_settings import BaseSettings
from functools import lru_cache
from decimal import Decimal
from typing import Optional

class Settings(BaseSettings):
    POSTGRES_HOST: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "settlement"
    POSTGRES_USER: str = "settlement"
    POSTGRES_PASSWORD: str = "settlement"
    # Full SQLAlchemy URL, wins over the POSTGRES_* parts when set
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    LOG_LEVEL: str = "INFO"

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"

    # Fees
    CURRENCY: str = "eur"
    PLATFORM_FEE_RATE: Decimal = Decimal("0.10")
    GATEWAY_FEE_RATE: Decimal = Decimal("0.014")
    GATEWAY_FEE_FIXED: Decimal = Decimal("0.25")

    # Fulfillment windows
    PICKUP_CODE_TTL_DAYS: int = 7
    PICKUP_DEADLINE_DAYS: int = 7
    PAYOUT_DELAY_HOURS: int = 48
    CHECKOUT_TTL_MINUTES: int = 30

    # Disputes and strikes
    DISPUTE_RESPONSE_HOURS: int = 48
    DISPUTE_REVIEW_HOURS: int = 72
    DISPUTE_MIN_DESCRIPTION: int = 50
    STRIKE_THRESHOLD: int = 2

    # Eco impact per item sold
    CO2_PER_ITEM_KG: Decimal = Decimal("2.0")
    WATER_PER_ITEM_L: Decimal = Decimal("500")
    BUYER_CREDITS_PER_EURO: int = 10
    SELLER_CREDITS_PER_EURO: int = 15

    # External collaborators
    FRONTEND_URL: str = "http://localhost:5173"
    PAYMENT_GATEWAY_URL: str = "https://api.stripe.com"
    PAYMENT_GATEWAY_API_KEY: str = ""
    PAYMENT_WEBHOOK_SECRET: str = ""
    WEBHOOK_TOLERANCE_SECONDS: int = 300
    NOTIFICATIONS_SERVICE_URL: str = "http://notifications:8000"
    NOTIFICATIONS_TIMEOUT: float = 5.0
    NOTIFICATION_WORKERS: int = 4

    class Config:
        env_file = ".env"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

@lru_cache
def get_settings() -> Settings:
    return Settings()
