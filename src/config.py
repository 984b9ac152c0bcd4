from pydantic_settings import BaseSettings
from typing import List, Optional
from decimal import Decimal

class Settings(BaseSettings):
    # Database
    DATABASE_URL: Optional[str] = None
    PGHOST: str = ""
    PGDATABASE: str = ""
    PGUSER: str = ""
    PGPASSWORD: str = ""
    PGSSLMODE: str = "require"
    SQLITE_PATH: str = "./ev_marketplace.db"

    # Security
    SECRET_KEY: str = "dev-secret-key-change-me"
    ALGORITHM: str = "HS256"

    # Application
    PROJECT_NAME: str = "EV Charging Station Marketplace"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Card gateway (Stripe)
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_CURRENCY: str = "npr"

    # Wallet gateway (Khalti)
    KHALTI_SECRET_KEY: Optional[str] = None
    KHALTI_ENV: str = "sandbox"
    KHALTI_RETURN_URL: str = "http://localhost:3000/booking/payment/callback"
    KHALTI_WEBSITE_URL: str = "http://localhost:3000"

    PAYMENT_TIMEOUT_SECONDS: float = 10.0
    WEBHOOK_TOLERANCE_SECONDS: int = 300

    # Booking lifecycle
    PENDING_BOOKING_EXPIRY_MINUTES: int = 30
    # Wallet checkouts stay open this long after the booking is created
    KHALTI_LINK_LIFETIME_MINUTES: int = 60
    CHECKIN_REQUIRE_SIGNATURE: bool = True

    # Static station catalog
    STATIC_CATALOG_PATH: str = "data/stations.json"
    STATIC_CATALOG_PER_HOUR: Decimal = Decimal("150")
    STATIC_CATALOG_DEPOSIT: Decimal = Decimal("500")

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if self.PGHOST:
            return f"postgresql://{self.PGUSER}:{self.PGPASSWORD}@{self.PGHOST}/{self.PGDATABASE}?sslmode={self.PGSSLMODE}"
        return f"sqlite:///{self.SQLITE_PATH}"

    @property
    def khalti_base_url(self) -> str:
        if self.KHALTI_ENV == "production":
            return "https://khalti.com/api/v2"
        return "https://dev.khalti.com/api/v2"

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
