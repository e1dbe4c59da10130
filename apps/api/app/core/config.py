from pydantic_settings import BaseSettings
from pydantic import ConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str
    SECRET_KEY: str
    ACCESS_TOKEN_MINUTES: int = 60
    FREE_TRADE_LIMIT: int = 50
    FREE_PLAN_MAX_DAYS: int = 50
    RISK_DAY_TIMEZONE: str = "UTC"
    RISK_STREAK_LOOKBACK: int = 60
    IDEMPOTENCY_KEY_MAX_AGE_DAYS: int = 30
    LOG_LEVEL: str = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore"
    )


settings = Settings()
