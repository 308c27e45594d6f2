"""
Application settings.

Values are read once from the environment (and an optional .env file) and
handed to the database, auth and payment collaborators through FastAPI
dependencies.
"""
from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    APP_NAME: str = "E-commerce API"

    # --- Persistence ---
    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "ecommerce"

    # --- Auth ---
    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRES_DAYS: int = 3

    # --- Payments (Stripe) ---
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    CHECKOUT_SUCCESS_URL: str = "http://localhost:3000/success"
    CHECKOUT_CANCEL_URL: str = "http://localhost:3000/cancel"
    CURRENCY: str = "usd"

    # --- HTTP / logging ---
    CORS_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000


@lru_cache
def get_settings() -> Settings:
    return Settings()
