"""Application configuration"""

import os
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "TradeCore"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./tradecore.db")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: Optional[str] = os.getenv("LOG_FILE")

    # Confirmation workflow
    PAYMENT_DUE_DAYS: int = int(os.getenv("PAYMENT_DUE_DAYS", "30"))
    ORDER_NUMBER_PREFIX: str = os.getenv("ORDER_NUMBER_PREFIX", "ORD")
    PI_NUMBER_PREFIX: str = os.getenv("PI_NUMBER_PREFIX", "VGR")

    # Packing / shipping defaults
    DEFAULT_BOXES_PER_PALLET: int = int(os.getenv("DEFAULT_BOXES_PER_PALLET", "40"))
    DEFAULT_GROSS_WEIGHT_PER_BOX: float = float(os.getenv("DEFAULT_GROSS_WEIGHT_PER_BOX", "10.06"))
    CONVERSION_DECIMAL_PLACES: int = int(os.getenv("CONVERSION_DECIMAL_PLACES", "2"))

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
