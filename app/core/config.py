from decimal import Decimal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # DB
    DATABASE_URL: str = "sqlite:///./database.db"

    # Security / JWT
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Checkout
    CURRENCY: str = "INR"
    DEFAULT_TAX_RATE: Decimal = Decimal("0")
    DEFAULT_SHIPPING_CHARGE: Decimal = Decimal("0")

    # Logging
    LOG_LEVEL: str = "INFO"
    SLOW_CALCULATION_MS: float = 30.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
