"""
Application configuration and environment settings.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    APP_NAME: str = "tabsettle"
    APP_ENV: str = "development"  # development, staging, production
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./tabsettle/db/tabsettle.db"

    # JWT
    SECRET_KEY: str = "your_secret_key"
    ALGORITHM: str = "HS256"

    # RabbitMQ
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_ENABLED: bool = True

    # Exchange rates
    FX_API_BASE: str = "https://open.er-api.com/v6/latest"  # no key required
    FX_HTTP_TIMEOUT: float = 10.0

    # Payments
    PAYMENT_GATEWAY_MODE: str = "auto"  # auto, mock, live
    PAYMENT_ALLOW_REAL_IN_NON_PROD: bool = False
    PAYMENT_HTTP_TIMEOUT: float = 15.0
    STRIPE_SECRET_KEY: str = ""
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    PAYMENT_SUCCESS_URL: str = "http://localhost:3000/payments/success"
    PAYMENT_CANCEL_URL: str = "http://localhost:3000/payments/cancel"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True)


settings = Settings()
