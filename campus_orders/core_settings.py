from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    SERVICE_NAME: str = "campus-orders"
    SERVICE_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    DATABASE_URL: str = "sqlite+aiosqlite:///./campus_orders.db"
    DB_ECHO: bool = False
    # Run `alembic upgrade head` on startup instead of create_all
    RUN_MIGRATIONS: bool = False

    JWT_SECRET: str = "change-me"
    JWT_ALG: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24
    ALLOW_DEV_TOKENS: bool = False

    PAYMENT_WINDOW_MINUTES: int = 15
    SWEEP_INTERVAL_SECONDS: int = 60
    ORDER_SWEEP_ENABLED: bool = True

    WECHAT_APP_ID: str = "wx-campus-app"
    WECHAT_MCH_ID: str = "campus-mch"
    WECHAT_NOTIFY_URL: str = "http://localhost:8000/order/wechat-notify"
    WECHAT_BODY_PREFIX: str = "Campus Delivery"
    # Sandbox settles WeChat payments immediately
    WECHAT_PAY_SANDBOX: bool = True
    # Shared secret the payment callback must echo in X-Wechat-Notify-Token; unset refuses every callback
    WECHAT_NOTIFY_TOKEN: Optional[str] = None

    NOTIFY_WEBHOOK_URL: Optional[str] = None
    NOTIFY_TIMEOUT_SECONDS: float = 5.0

    CORS_ORIGINS: list[str] = ["*"]

@lru_cache
def get_settings() -> Settings:
    return Settings()
